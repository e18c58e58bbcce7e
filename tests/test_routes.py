from soundsteps.models.session import Channel, SessionStatus
from soundsteps.services import messages

from tests.conftest import CAREGIVER_PHONE, LEARNER_PHONE

CALL_ID = "ATVId_route_call"


def voice_event(client, **extra):
    data = {"sessionId": CALL_ID, "callerNumber": LEARNER_PHONE, "isActive": "1", **extra}
    return client.post("/webhooks/voice", data=data)


def dtmf(client, digits):
    data = {"sessionId": CALL_ID, "callerNumber": LEARNER_PHONE, "dtmfDigits": digits}
    return client.post("/webhooks/voice/dtmf", data=data)


def in_app(client, fn, *args):
    """Run a store coroutine on the app's event loop."""
    return client.portal.call(fn, *args)


class TestVoiceWebhooks:

    def test_call_start_returns_voice_xml(self, client):
        response = voice_event(client)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert response.text.startswith('<?xml version="1.0" encoding="UTF-8"?><Response>')
        assert "Welcome to SoundSteps" in response.text
        assert "<Redirect>" in response.text

    def test_full_call_runs_completion(self, client, store, provider):
        voice_event(client)
        voice_event(client)
        dtmf(client, "2")
        voice_event(client)
        voice_event(client)
        dtmf(client, "2")
        dtmf(client, "2")
        dtmf(client, "8")
        response = dtmf(client, "254722000002#")

        assert "Thanks, we will send a short summary now." in response.text
        session = in_app(client, store.latest_for_phone, LEARNER_PHONE, Channel.VOICE)
        assert session.status == SessionStatus.COMPLETED
        assert session.score == 2
        assert session.caregiver_phone == CAREGIVER_PHONE
        # finalized by the completion pipeline
        assert in_app(client, store.get_by_channel_id, Channel.VOICE, CALL_ID) is None

        airtime = {(r.to, r.raw["amount"]) for r in provider.outbox if r.action == "airtime"}
        assert airtime == {(LEARNER_PHONE, 10), (CAREGIVER_PHONE, 5)}
        assert provider.messages_to(CAREGIVER_PHONE)[0].startswith("SoundSteps Lesson Update")

    def test_caregiver_confirmation_ends_call(self, client, provider):
        for event in ("call", "call", "2", "call", "call", "2", "2", "8"):
            if event == "call":
                voice_event(client)
            else:
                dtmf(client, event)
        response = dtmf(client, "254722000002#")

        assert response.text.endswith("<Hangup/></Response>")
        assert "<Redirect>" not in response.text

        # the provider may still post to the finished call id
        late = voice_event(client)
        assert late.text.endswith("<Hangup/></Response>")
        assert "Welcome to SoundSteps" not in late.text
        sessions = client.get("/sessions").json()["sessions"]
        assert len(sessions) == 1
        assert sessions[0]["status"] == "completed"
        assert len([r for r in provider.outbox if r.action == "airtime"]) == 2

    def test_call_event_after_hang_up_does_not_restart(self, client):
        voice_event(client)
        voice_event(client, isActive="0", status="Completed")

        late = voice_event(client)
        assert "<Hangup/>" in late.text
        assert "Welcome to SoundSteps" not in late.text
        sessions = client.get("/sessions").json()["sessions"]
        assert len(sessions) == 1
        assert sessions[0]["status"] == "abandoned"

    def test_hang_up_notification(self, client, store):
        voice_event(client)
        response = voice_event(client, isActive="0", status="Completed")

        assert response.status_code == 200
        assert response.text.endswith("<Response></Response>")
        session = in_app(client, store.latest_for_phone, LEARNER_PHONE, Channel.VOICE)
        assert session.status == SessionStatus.ABANDONED

    def test_status_callback(self, client, store):
        voice_event(client)
        response = client.post(
            "/webhooks/voice/status",
            data={"sessionId": CALL_ID, "status": "Failed"}
        )
        assert response.json() == {"success": True, "status": "failed"}

    def test_dtmf_for_unknown_call(self, client):
        response = dtmf(client, "1")
        assert response.status_code == 200
        assert "<Hangup/>" in response.text


class TestSmsRoutes:

    def test_start_lesson_requires_fields(self, client):
        response = client.post("/sms/start-lesson", json={"studentPhone": LEARNER_PHONE})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_start_unknown_lesson(self, client):
        response = client.post(
            "/sms/start-lesson",
            json={"studentPhone": LEARNER_PHONE, "lessonId": "nope"}
        )
        assert response.status_code == 404

    def test_sms_lesson_end_to_end(self, client, provider, store):
        response = client.post("/sms/start-lesson", json={
            "studentPhone": LEARNER_PHONE,
            "lessonId": "demo-math-001",
            "studentName": "Amina",
            "caregiverPhone": CAREGIVER_PHONE,
            "language": "sw",
        })
        body = response.json()
        assert body["success"] is True
        assert body["totalQuestions"] == 3

        for reply in ("b", "3", "C"):
            ack = client.post("/sms/webhook", data={"from": LEARNER_PHONE, "text": reply, "id": "m1"})
            assert ack.json() == {"success": True, "messages": 2}

        progress = client.get(f"/sms/progress/{LEARNER_PHONE}").json()["progress"]
        assert progress["score"] == 3
        assert progress["status"] == "completed"
        assert progress["answers"] == ["B", "C", "C"]
        assert progress["lessonTitle"] == "Basic Mathematics"

        assert in_app(client, store.get_by_channel_id, Channel.SMS, LEARNER_PHONE) is None
        assert provider.messages_to(CAREGIVER_PHONE)[0].startswith("SoundSteps Ripoti ya Somo")

    def test_inbound_without_lesson(self, client, provider):
        response = client.post("/sms/webhook", data={"from": LEARNER_PHONE, "text": "A"})
        assert response.json() == {"success": True, "messages": 1}
        assert provider.messages_to(LEARNER_PHONE) == [messages.NO_ACTIVE_LESSON]

    def test_progress_for_unknown_phone(self, client):
        assert client.get("/sms/progress/+254700000000").json()["success"] is False


class TestSessionRoutes:

    def test_list_and_stats(self, client):
        voice_event(client)
        sessions = client.get("/sessions").json()["sessions"]
        assert len(sessions) == 1
        assert sessions[0]["channel"] == "voice"
        assert sessions[0]["status"] == "in_progress"

        stats = client.get("/sessions/stats").json()["stats"]
        assert stats["totalSessions"] == 1
        assert stats["inProgress"] == 1

    def test_outbound_call(self, client, provider):
        response = client.post("/sessions/outbound-call", json={"phoneNumber": LEARNER_PHONE})
        assert response.json()["success"] is True
        assert provider.outbox[-1].action == "call"

    def test_outbound_call_requires_phone(self, client):
        assert client.post("/sessions/outbound-call", json={}).status_code == 400


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["provider"] == "mock"
