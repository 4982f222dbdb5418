from datetime import datetime, timezone

from fastapi.testclient import TestClient

from iot_monitor.main import app

client = TestClient(app)


def _parse(ts: str) -> datetime:
    return datetime.fromisoformat(ts.replace('Z', '+00:00'))


def _device(headers, name='Sensor Node'):
    r = client.post('/api/v1/devices', json={'device_name': name, 'location': 'Building A'}, headers=headers)
    assert r.status_code == 201
    return r.json()['data']


def _reading(device_id, timestamp, headers, temperature=25.5, humidity=60.5, status='active'):
    payload = {
        'device_id': device_id,
        'temperature': temperature,
        'humidity': humidity,
        'status': status,
        'timestamp': timestamp,
    }
    return client.post('/api/v1/sensor-data', json=payload, headers=headers)


def test_store_sensor_data(auth_headers):
    device = _device(auth_headers)
    r = _reading(device['id'], '2025-03-04T12:00:00Z', auth_headers)
    assert r.status_code == 201
    data = r.json()['data']
    assert data['device_id'] == device['id']
    assert data['temperature'] == 25.5
    assert data['humidity'] == 60.5
    assert data['status'] == 'active'
    assert _parse(data['timestamp']) == datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc)
    assert set(data) == {'id', 'device_id', 'temperature', 'humidity', 'status', 'timestamp', 'created_at', 'updated_at'}


def test_store_normalises_timestamp_to_utc(auth_headers):
    device = _device(auth_headers)
    r = _reading(device['id'], '2025-03-04T14:00:00+02:00', auth_headers)
    assert r.status_code == 201
    assert _parse(r.json()['data']['timestamp']) == datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc)


def test_store_rejects_unknown_device(auth_headers):
    r = _reading(999999, '2025-03-04T12:00:00Z', auth_headers)
    assert r.status_code == 422
    assert r.json()['errors'] == {'device_id': ['The selected device_id is invalid.']}


def test_store_requires_every_field(auth_headers):
    r = client.post('/api/v1/sensor-data', json={}, headers=auth_headers)
    assert r.status_code == 422
    assert set(r.json()['errors']) == {'device_id', 'temperature', 'humidity', 'status', 'timestamp'}


def test_store_rejects_non_numeric_readings(auth_headers):
    device = _device(auth_headers)
    r = _reading(device['id'], 'not-a-date', auth_headers, temperature='hot')
    assert r.status_code == 422
    assert set(r.json()['errors']) == {'temperature', 'timestamp'}


def test_latest_status_picks_newest_timestamp(auth_headers):
    device = _device(auth_headers)
    _reading(device['id'], '2025-03-04T12:00:00Z', auth_headers, status='first')
    _reading(device['id'], '2025-03-04T14:00:00Z', auth_headers, status='newest')
    _reading(device['id'], '2025-03-04T13:00:00Z', auth_headers, status='stored-last')
    r = client.get(f"/api/v1/devices/{device['id']}/latest-status", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()['status'] == 'newest'


def test_latest_status_without_readings_is_null(auth_headers):
    device = _device(auth_headers)
    r = client.get(f"/api/v1/devices/{device['id']}/latest-status", headers=auth_headers)
    assert r.status_code == 200
    assert r.json() is None


def test_latest_status_unknown_device_is_404(auth_headers):
    r = client.get('/api/v1/devices/999999/latest-status', headers=auth_headers)
    assert r.status_code == 404
    assert r.json()['success'] is False


def test_latest_status_refreshes_after_new_reading(auth_headers):
    device = _device(auth_headers)
    url = f"/api/v1/devices/{device['id']}/latest-status"
    assert client.get(url, headers=auth_headers).json() is None
    _reading(device['id'], '2025-03-04T12:00:00Z', auth_headers, status='online')
    assert client.get(url, headers=auth_headers).json()['status'] == 'online'


def test_historical_status_range_is_inclusive_and_ordered(auth_headers):
    device = _device(auth_headers)
    other = _device(auth_headers, name='Other Node')
    for ts, status in [
        ('2025-03-04T13:00:00Z', 'b'),
        ('2025-03-04T11:59:59Z', 'before'),
        ('2025-03-04T12:00:00Z', 'a'),
        ('2025-03-04T14:00:00Z', 'c'),
        ('2025-03-04T14:00:01Z', 'after'),
    ]:
        assert _reading(device['id'], ts, auth_headers, status=status).status_code == 201
    _reading(other['id'], '2025-03-04T13:00:00Z', auth_headers, status='other-device')

    r = client.get(
        f"/api/v1/devices/{device['id']}/historical-status",
        params={'start_time': '2025-03-04T12:00:00Z', 'end_time': '2025-03-04T14:00:00Z'},
        headers=auth_headers,
    )
    assert r.status_code == 200
    assert [row['status'] for row in r.json()] == ['a', 'b', 'c']


def test_historical_status_validates_range(auth_headers):
    device = _device(auth_headers)
    url = f"/api/v1/devices/{device['id']}/historical-status"
    r = client.get(url, params={'start_time': '2025-03-05T00:00:00Z', 'end_time': '2025-03-04T00:00:00Z'}, headers=auth_headers)
    assert r.status_code == 422
    assert 'end_time' in r.json()['errors']

    missing = client.get(url, headers=auth_headers)
    assert missing.status_code == 422
    assert set(missing.json()['errors']) == {'start_time', 'end_time'}


def test_historical_status_unknown_device_is_404(auth_headers):
    r = client.get(
        '/api/v1/devices/999999/historical-status',
        params={'start_time': '2025-03-04T00:00:00Z', 'end_time': '2025-03-05T00:00:00Z'},
        headers=auth_headers,
    )
    assert r.status_code == 404


def test_device_api_key_can_post_own_readings_only(auth_headers):
    device = _device(auth_headers)
    other = _device(auth_headers, name='Other Node')
    key_headers = {'X-API-Key': device['api_key']}

    own = _reading(device['id'], '2025-03-04T12:00:00Z', key_headers)
    assert own.status_code == 201

    foreign = _reading(other['id'], '2025-03-04T12:00:00Z', key_headers)
    assert foreign.status_code == 403

    bad_key = _reading(device['id'], '2025-03-04T12:00:00Z', {'X-API-Key': 'nope'})
    assert bad_key.status_code == 401

    anonymous = _reading(device['id'], '2025-03-04T12:00:00Z', {})
    assert anonymous.status_code == 401


def test_device_api_key_does_not_grant_read_access(auth_headers):
    device = _device(auth_headers)
    r = client.get(f"/api/v1/devices/{device['id']}/latest-status", headers={'X-API-Key': device['api_key']})
    assert r.status_code == 401 or r.status_code == 403


def test_timestamps_outside_the_utc_range_are_rejected(auth_headers):
    device = _device(auth_headers)
    r = _reading(device['id'], '0001-01-01T00:00:00+05:00', auth_headers)
    assert r.status_code == 422
    assert 'timestamp' in r.json()['errors']

    url = f"/api/v1/devices/{device['id']}/historical-status"
    start = client.get(url, params={'start_time': '0001-01-01T00:00:00+05:00', 'end_time': '2025-03-04T00:00:00Z'}, headers=auth_headers)
    assert start.status_code == 422
    assert 'start_time' in start.json()['errors']
    end = client.get(url, params={'start_time': '2025-03-04T00:00:00Z', 'end_time': '9999-12-31T23:59:59-05:00'}, headers=auth_headers)
    assert end.status_code == 422
    assert 'end_time' in end.json()['errors']


def test_out_of_range_ids_are_rejected(auth_headers):
    huge = 2**70
    r = _reading(huge, '2025-03-04T12:00:00Z', auth_headers)
    assert r.status_code == 422
    assert 'device_id' in r.json()['errors']
    assert _reading(0, '2025-03-04T12:00:00Z', auth_headers).status_code == 422

    latest = client.get(f'/api/v1/devices/{huge}/latest-status', headers=auth_headers)
    assert latest.status_code == 422
    assert 'device_id' in latest.json()['errors']
    history = client.get(
        f'/api/v1/devices/{huge}/historical-status',
        params={'start_time': '2025-03-04T00:00:00Z', 'end_time': '2025-03-05T00:00:00Z'},
        headers=auth_headers,
    )
    assert history.status_code == 422
