from datetime import datetime

import pytest
from httpx import AsyncClient

from masada.models import Notification, NotificationType, User, UserStatus, UserType
from conftest import TEST_PASSWORD, auth_headers_for, create_user, fetch


async def add_notifications(db, user, count: int = 2):
    notifications = [
        Notification(
            user_id=user.id,
            type=NotificationType.SYSTEM_UPDATE,
            title=f'Notice {i}',
            message='Scheduled maintenance tonight',
            is_read=False,
            created_at=datetime.utcnow(),
        )
        for i in range(count)
    ]
    db.add_all(notifications)
    await db.commit()
    return notifications


@pytest.mark.asyncio
async def test_get_profile(client: AsyncClient, customer_user, customer_headers):
    response = await client.get('/api/v1/users/profile', headers=customer_headers)

    assert response.status_code == 200
    user = response.json()['data']['user']
    assert user['id'] == customer_user.id
    assert user['customer_profile']['plan'] == 'starter'


@pytest.mark.asyncio
async def test_update_profile(client: AsyncClient, customer_headers):
    response = await client.put(
        '/api/v1/users/profile',
        json={'name': 'Hanna Tesfaye', 'avatar': 'https://cdn.example.et/a.png'},
        headers=customer_headers,
    )

    assert response.status_code == 200
    user = response.json()['data']['user']
    assert user['name'] == 'Hanna Tesfaye'
    assert user['avatar'] == 'https://cdn.example.et/a.png'


@pytest.mark.asyncio
async def test_update_customer_profile(client: AsyncClient, customer_headers):
    response = await client.put(
        '/api/v1/users/customer-profile',
        json={'company': 'Sheba Logistics', 'company_size': '51-200', 'industry': 'Logistics'},
        headers=customer_headers,
    )

    assert response.status_code == 200
    profile = response.json()['data']['user']['customer_profile']
    assert profile['company'] == 'Sheba Logistics'
    assert profile['company_size'] == '51-200'


@pytest.mark.asyncio
async def test_tester_cannot_update_customer_profile(client: AsyncClient, tester_headers):
    response = await client.put('/api/v1/users/customer-profile', json={'company': 'Nope Inc'},
                                headers=tester_headers)

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_update_tester_profile(client: AsyncClient, tester_headers):
    response = await client.put(
        '/api/v1/users/tester-profile',
        json={'city': 'Bahir Dar', 'region': 'Amhara', 'phone': '0911223344'},
        headers=tester_headers,
    )

    assert response.status_code == 200
    profile = response.json()['data']['user']['tester_profile']
    assert profile['city'] == 'Bahir Dar'
    assert profile['region'] == 'Amhara'


@pytest.mark.asyncio
async def test_update_tester_profile_rejects_unknown_region(client: AsyncClient, tester_headers):
    response = await client.put('/api/v1/users/tester-profile', json={'region': 'Atlantis'},
                                headers=tester_headers)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_list_users_admin_only(client: AsyncClient, db_session, admin_headers, customer_headers):
    await create_user(db_session, UserType.TESTER)

    as_admin = await client.get('/api/v1/users', params={'user_type': 'TESTER'}, headers=admin_headers)
    as_customer = await client.get('/api/v1/users', headers=customer_headers)

    assert as_admin.status_code == 200
    assert as_admin.json()['data']['pagination']['total'] == 1
    assert as_customer.status_code == 403


@pytest.mark.asyncio
async def test_dashboard_stats_for_tester(client: AsyncClient, tester_headers):
    response = await client.get('/api/v1/users/dashboard-stats', headers=tester_headers)

    stats = response.json()['data']['stats']
    assert stats['completed_tests'] == 0
    assert stats['level'] == 'NEW_TESTER'


@pytest.mark.asyncio
async def test_dashboard_stats_for_customer(client: AsyncClient, published_test, customer_headers):
    response = await client.get('/api/v1/users/dashboard-stats', headers=customer_headers)

    stats = response.json()['data']['stats']
    assert stats['tests_created'] == 1
    assert stats['active_tests'] == 1
    assert stats['total_spent'] == 0


@pytest.mark.asyncio
async def test_notifications_flow(client: AsyncClient, db_session, tester_user, tester_headers):
    notifications = await add_notifications(db_session, tester_user, 3)

    count = await client.get('/api/v1/users/notifications/unread-count', headers=tester_headers)
    assert count.json()['data']['count'] == 3

    read = await client.put(f'/api/v1/users/notifications/{notifications[0].id}/read', headers=tester_headers)
    assert read.status_code == 200
    assert read.json()['data']['notification']['is_read'] is True

    unread = await client.get('/api/v1/users/notifications', params={'unread_only': True}, headers=tester_headers)
    assert unread.json()['data']['pagination']['total'] == 2

    read_all = await client.put('/api/v1/users/notifications/read-all', headers=tester_headers)
    assert read_all.json()['data']['updated'] == 2

    count = await client.get('/api/v1/users/notifications/unread-count', headers=tester_headers)
    assert count.json()['data']['count'] == 0


@pytest.mark.asyncio
async def test_cannot_read_someone_elses_notification(client: AsyncClient, db_session, tester_user, customer_headers):
    notifications = await add_notifications(db_session, tester_user, 1)

    response = await client.put(f'/api/v1/users/notifications/{notifications[0].id}/read',
                                headers=customer_headers)

    assert response.status_code == 404
    assert response.json()['message'] == 'Notification not found'


@pytest.mark.asyncio
async def test_delete_account_deactivates(client: AsyncClient, db_session):
    user = await create_user(db_session, UserType.TESTER)
    headers = auth_headers_for(user)

    response = await client.delete('/api/v1/users/account', headers=headers)

    assert response.status_code == 200
    assert (await fetch(User, user.id)).status == UserStatus.INACTIVE

    # An inactive account can no longer use its access token
    profile = await client.get('/api/v1/users/profile', headers=headers)
    assert profile.status_code == 401

    login = await client.post('/api/v1/auth/login', json={'email': user.email, 'password': TEST_PASSWORD})
    refresh_token = login.json()['data']['refresh_token']
    refreshed = await client.post('/api/v1/auth/refresh', json={'refresh_token': refresh_token})
    assert refreshed.status_code == 401


@pytest.mark.asyncio
async def test_recent_activity(client: AsyncClient, published_test, tester_headers, customer_headers):
    await client.post(
        '/api/v1/analytics/events',
        json={'event': 'task_viewed', 'data': {'task': 1}, 'test_id': published_test.id},
        headers=tester_headers,
    )

    mine = await client.get('/api/v1/users/activity', headers=tester_headers)
    theirs = await client.get('/api/v1/users/activity', headers=customer_headers)

    activity = mine.json()['data']['activity']
    assert [a['event'] for a in activity] == ['task_viewed']
    assert activity[0]['test_id'] == published_test.id
    assert theirs.json()['data']['activity'] == []
