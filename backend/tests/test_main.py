import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get('/health')

    assert response.status_code == 200
    body = response.json()
    assert body['status'] == 'OK'
    assert body['environment'] == 'test'
    assert body['uptime'] >= 0


@pytest.mark.asyncio
async def test_api_index_lists_groups(client: AsyncClient):
    response = await client.get('/api/v1')

    assert response.status_code == 200
    endpoints = response.json()['data']['endpoints']
    assert endpoints['tests'] == '/tests'
    assert endpoints['websocket'] == '/ws'


@pytest.mark.asyncio
async def test_headers_on_every_response(client: AsyncClient):
    response = await client.get('/health', headers={'X-Request-ID': 'req-123'})

    assert response.headers['x-request-id'] == 'req-123'
    assert response.headers['x-response-time'].endswith('ms')
    assert response.headers['x-content-type-options'] == 'nosniff'
    assert response.headers['x-frame-options'] == 'DENY'


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope(client: AsyncClient):
    response = await client.get('/api/v1/nowhere')

    assert response.status_code == 404
    body = response.json()
    assert body['error'] == 'Client Error'
    assert body['message'] == 'Route /api/v1/nowhere not found'
    assert body['path'] == '/api/v1/nowhere'
    assert body['timestamp'].endswith('Z')


@pytest.mark.asyncio
async def test_validation_errors_list_fields(client: AsyncClient):
    response = await client.post('/api/v1/auth/login', json={'email': 'not-an-email'})

    assert response.status_code == 400
    body = response.json()
    assert body['message'] == 'Validation failed'
    fields = {item['field'] for item in body['details']}
    assert {'email', 'password'} <= fields


@pytest.mark.asyncio
async def test_oversized_request_rejected(client: AsyncClient):
    response = await client.post(
        '/api/v1/auth/login',
        content=b'{}',
        headers={'Content-Type': 'application/json', 'Content-Length': str(200 * 1024 * 1024)},
    )

    assert response.status_code == 413
