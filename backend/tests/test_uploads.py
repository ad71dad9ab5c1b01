import pytest
from httpx import AsyncClient

from masada.models import UserType
from conftest import auth_headers_for, create_user

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64


def png(name: str = 'mockup.png'):
    return ('files', (name, PNG_BYTES, 'image/png'))


@pytest.mark.asyncio
async def test_upload_general_file_and_download(client: AsyncClient, customer_headers):
    response = await client.post('/api/v1/uploads/general', files=[png()], headers=customer_headers)

    assert response.status_code == 201
    stored = response.json()['data']['files'][0]
    assert stored['original_name'] == 'mockup.png'
    assert stored['mime_type'] == 'image/png'
    assert stored['size'] == len(PNG_BYTES)
    assert stored['file_name'].startswith('files-')
    assert stored['file_name'].endswith('.png')
    assert stored['url'] == f"/api/v1/uploads/general/{stored['file_name']}"

    download = await client.get(stored['url'])
    assert download.status_code == 200
    assert download.content == PNG_BYTES
    assert download.headers['cache-control'] == 'public, max-age=31536000'


@pytest.mark.asyncio
async def test_upload_rejects_disallowed_type(client: AsyncClient, customer_headers):
    response = await client.post(
        '/api/v1/uploads/general',
        files=[('files', ('run.sh', b'echo hi', 'application/x-sh'))],
        headers=customer_headers,
    )

    assert response.status_code == 400
    assert response.json()['message'] == 'File type application/x-sh is not allowed'


@pytest.mark.asyncio
async def test_upload_unknown_type(client: AsyncClient, customer_headers):
    response = await client.post('/api/v1/uploads/secrets', files=[png()], headers=customer_headers)

    assert response.status_code == 400
    assert response.json()['message'] == 'Invalid upload type'


@pytest.mark.asyncio
async def test_upload_without_files(client: AsyncClient, customer_headers):
    response = await client.post('/api/v1/uploads/general', data={'note': 'empty'}, headers=customer_headers)

    assert response.status_code == 400
    assert response.json()['message'] == 'No files uploaded'


@pytest.mark.asyncio
async def test_upload_requires_auth(client: AsyncClient, db_session):
    response = await client.post('/api/v1/uploads/general', files=[png()])

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_test_assets_are_recorded(client: AsyncClient, draft_test, customer_headers, tester_headers):
    response = await client.post(
        '/api/v1/uploads/test-assets',
        files=[png('home.png'), png('checkout.png')],
        data={'test_id': draft_test.id},
        headers=customer_headers,
    )

    assert response.status_code == 201
    assert len(response.json()['data']['files']) == 2

    listing = await client.get(f'/api/v1/uploads/tests/{draft_test.id}/assets', headers=customer_headers)
    assets = listing.json()['data']['assets']
    assert {a['original_name'] for a in assets} == {'home.png', 'checkout.png'}
    assert all(a['test_id'] == draft_test.id for a in assets)

    # Draft tests are not open, so testers cannot see their assets yet
    hidden = await client.get(f'/api/v1/uploads/tests/{draft_test.id}/assets', headers=tester_headers)
    assert hidden.status_code == 403


@pytest.mark.asyncio
async def test_test_assets_need_owned_test(client: AsyncClient, db_session, draft_test):
    other = await create_user(db_session, UserType.CUSTOMER)

    response = await client.post(
        '/api/v1/uploads/test-assets',
        files=[png()],
        data={'test_id': draft_test.id},
        headers=auth_headers_for(other),
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_test_assets_need_test_id(client: AsyncClient, customer_headers):
    response = await client.post('/api/v1/uploads/test-assets', files=[png()], headers=customer_headers)

    assert response.status_code == 400
    assert response.json()['message'] == 'test_id is required for test assets'


@pytest.mark.asyncio
async def test_delete_test_asset(client: AsyncClient, draft_test, customer_headers):
    uploaded = await client.post(
        '/api/v1/uploads/test-assets',
        files=[png()],
        data={'test_id': draft_test.id},
        headers=customer_headers,
    )
    file_name = uploaded.json()['data']['files'][0]['file_name']

    response = await client.delete(f'/api/v1/uploads/test-assets/{file_name}', headers=customer_headers)

    assert response.status_code == 200
    listing = await client.get(f'/api/v1/uploads/tests/{draft_test.id}/assets', headers=customer_headers)
    assert listing.json()['data']['assets'] == []
    gone = await client.get(f'/api/v1/uploads/test-assets/{file_name}')
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_delete_test_removes_assets(client: AsyncClient, draft_test, customer_headers):
    uploaded = await client.post(
        '/api/v1/uploads/test-assets',
        files=[png()],
        data={'test_id': draft_test.id},
        headers=customer_headers,
    )
    stored = uploaded.json()['data']['files'][0]

    await client.delete(f'/api/v1/tests/{draft_test.id}', headers=customer_headers)

    gone = await client.get(stored['url'])
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_download_missing_file(client: AsyncClient, db_session):
    response = await client.get('/api/v1/uploads/general/files-0-0.png')

    assert response.status_code == 404
    assert response.json()['message'] == 'File not found'
