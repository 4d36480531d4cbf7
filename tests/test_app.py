"""
Tests for the Flask JSON adapter
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime

import pytest

import app as web
from voiceplanner.config import PlannerConfig
from voiceplanner.executor import InMemoryDiaryStore


FIXED_NOW = datetime(2024, 3, 15, 14, 30)


def make_client(entries=None):
    store = InMemoryDiaryStore(entries or [])
    web.initialize_components(PlannerConfig(), store, clock=lambda: FIXED_NOW)
    return web.app.test_client(), store


def open_session(client):
    response = client.post('/api/session')
    assert response.status_code == 201
    return response.get_json()['session_id']


def say(client, session_id, text):
    return client.post('/api/transcript', json={'session_id': session_id, 'text': text})


# ========== Flow Tests ==========

def test_create_and_save():
    client, store = make_client()
    session_id = open_session(client)

    response = say(client, session_id, "Ich habe Schmerzstufe 8 und Sumatriptan 50 genommen, jetzt")
    body = response.get_json()
    assert response.status_code == 200
    assert body['state'] == 'reviewing'
    assert body['plan']['kind'] == 'mutation'
    assert body['plan']['risk'] == 'low'

    saved = client.post('/api/save', json={'session_id': session_id}).get_json()
    assert saved['state'] == 'done'
    assert saved['execution']['message'] == "Eintrag erstellt: Stärke 8"
    assert len(store) == 1
    print("✓ Entry created over HTTP")


def test_delete_requires_confirm():
    client, store = make_client([{"occurred_at": "2024-03-14T17:00", "pain_level": 7}])
    session_id = open_session(client)

    body = say(client, session_id, "Lösche den Eintrag von gestern").get_json()
    assert body['state'] == 'confirming'
    assert body['plan']['confirm_type'] == 'danger'

    rejected = client.post('/api/save', json={'session_id': session_id})
    assert rejected.status_code == 409
    assert rejected.get_json()['command'] == 'Save'
    assert len(store) == 1

    confirmed = client.post('/api/confirm', json={'session_id': session_id}).get_json()
    assert confirmed['state'] == 'done'
    assert len(store) == 0
    print("✓ Delete executed after confirm")


def test_slot_filling_over_http():
    client, _ = make_client()
    session_id = open_session(client)

    body = say(client, session_id, "Schmerzstärke 7").get_json()
    assert body['state'] == 'slot_filling'
    assert body['plan']['prompt'] == "Wann war das?"

    body = client.post('/api/slot', json={'session_id': session_id, 'value': 'jetzt'}).get_json()
    assert body['state'] == 'slot_filling'

    body = client.post('/api/slot', json={'session_id': session_id, 'value': 'keine'}).get_json()
    assert body['state'] == 'reviewing'
    assert body['plan']['payload']['pain_level'] == 7
    print("✓ Slot questions answered over HTTP")


def test_cancel_returns_to_idle():
    client, _ = make_client()
    session_id = open_session(client)
    say(client, session_id, "Schmerzstärke 7")

    body = client.post('/api/cancel', json={'session_id': session_id, 'reason': 'user'}).get_json()
    assert body['state'] == 'idle'
    assert body['plan'] is None

    fetched = client.get('/api/session', query_string={'session_id': session_id}).get_json()
    assert fetched['state'] == 'idle'
    print("✓ Cancel over HTTP")


# ========== Error Tests ==========

def test_unknown_session():
    client, _ = make_client()

    assert client.get('/api/session', query_string={'session_id': 'nope'}).status_code == 404
    assert say(client, 'nope', "Stärke 5").status_code == 404
    print("✓ Unknown session rejected")


def test_store_rejection_returns_to_reviewing():
    class RejectingStore(InMemoryDiaryStore):
        def create_entry(self, payload):
            raise ValueError("Schmerzstärke ungültig")

    web.initialize_components(PlannerConfig(), RejectingStore(), clock=lambda: FIXED_NOW)
    client = web.app.test_client()
    session_id = open_session(client)
    say(client, session_id, "Ich habe Schmerzstufe 8 und Sumatriptan 50 genommen, jetzt")

    response = client.post('/api/save', json={'session_id': session_id})
    body = response.get_json()
    assert response.status_code == 200
    assert body['state'] == 'reviewing'
    assert body['last_error'] == "Schmerzstärke ungültig"
    assert body['execution'] is None
    print("✓ Rejected save reported, session back in reviewing")


def test_bad_requests():
    client, _ = make_client()
    session_id = open_session(client)

    assert client.post('/api/select', json={'session_id': session_id, 'index': 5}).status_code == 400
    assert client.post('/api/transcript', json={'session_id': session_id}).status_code == 400
    assert client.post('/api/slot', json={'session_id': session_id, 'value': 3}).status_code == 400
    assert client.post('/api/select', json={'session_id': session_id, 'index': 0}).status_code == 409
    print("✓ Malformed requests rejected")


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
