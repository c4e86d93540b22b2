"""
API route tests.

Every request runs against the fake hosted project from conftest; the
workspace is started by the first request.
"""

import json

import bcrypt

from conftest import ADMIN_EMAIL, login, make_app


# =============================================================================
# AUTH
# =============================================================================

def test_session_starts_signed_out(client):
    response = client.get('/api/auth/session')
    assert response.status_code == 200
    body = response.get_json()
    assert body['authenticated'] is False
    assert body['auth_checked'] is True
    assert body['user'] is None


def test_login_with_admin_shortcut(client):
    response = client.post('/api/auth/login', json={'username': 'admin', 'password': 'AdminPass1'})
    assert response.status_code == 200
    body = response.get_json()
    assert body['authenticated'] is True
    assert body['is_admin'] is True
    assert body['user']['email'] == ADMIN_EMAIL
    assert body['permissions'] == ['admin', 'approve', 'delete', 'read', 'write']


def test_login_persists_durable_keys(app, client):
    login(client, 'john@kiosc.com', 'ManagerPass1')
    storage = app.extensions['fintrack'].storage
    assert storage.get_item('isAuthenticated') == 'true'
    assert json.loads(storage.get_item('currentUser'))['username'] == 'manager'


def test_login_rejects_bad_credentials(client):
    response = login(client, 'john@kiosc.com', 'wrong')
    assert response.status_code == 401
    assert response.get_json()['error'] == 'Invalid login credentials'


def test_login_requires_fields(client):
    assert client.post('/api/auth/login', json={'email': 'john@kiosc.com'}).status_code == 400


def test_logout(admin_client):
    assert admin_client.post('/api/auth/logout').status_code == 200
    assert admin_client.get('/api/auth/session').get_json()['authenticated'] is False
    assert admin_client.get('/api/data/Suppliers').status_code == 401


def test_register_is_pending(client, backend):
    response = client.post('/api/auth/register', json={
        'email': 'new@kiosc.com',
        'password': 'NewPass123',
        'confirm_password': 'NewPass123',
        'name': 'New Person',
    })
    assert response.status_code == 201
    assert response.get_json()['status'] == 'pending'
    assert client.get('/api/auth/session').get_json()['authenticated'] is False
    assert any(row['email'] == 'new@kiosc.com' for row in backend.rows('Users'))


def test_register_password_mismatch(client):
    response = client.post('/api/auth/register', json={
        'email': 'new@kiosc.com', 'password': 'a', 'confirm_password': 'b',
    })
    assert response.status_code == 400


def test_reset_password(client, backend):
    response = client.post('/api/auth/reset-password', json={'email': 'john@kiosc.com'})
    assert response.status_code == 200
    assert backend.recoveries[0][0] == 'john@kiosc.com'


def test_update_password_requires_auth(client):
    assert client.post('/api/auth/update-password', json={'password': 'x'}).status_code == 401


def test_update_password(admin_client, backend):
    response = admin_client.post('/api/auth/update-password', json={'password': 'Rotated123'})
    assert response.status_code == 200
    assert backend.auth_users[ADMIN_EMAIL]['password'] == 'Rotated123'


def test_break_glass_login_through_api(backend):
    hashed = bcrypt.hashpw(b'Emergency1', bcrypt.gensalt(rounds=4)).decode('utf-8')
    app = make_app(backend, BREAK_GLASS_ENABLED=True, BREAK_GLASS_PASSWORD_HASH=hashed)
    try:
        client = app.test_client()
        backend.auth_offline = True
        response = client.post('/api/auth/login', json={'username': 'admin', 'password': 'Emergency1'})
        assert response.status_code == 200
        assert response.get_json()['break_glass'] is True
    finally:
        app.extensions['fintrack'].shutdown()


# =============================================================================
# DATA
# =============================================================================

def test_data_requires_auth(client):
    assert client.get('/api/data/Suppliers').status_code == 401


def test_list_and_filter(admin_client):
    body = admin_client.get('/api/data/Suppliers').get_json()
    assert body['count'] == 2

    filtered = admin_client.get('/api/data/Suppliers?field=code&value=SUP002').get_json()
    assert [item['name'] for item in filtered['items']] == ['Office Supplies Co']


def test_unknown_collection_is_404(admin_client):
    response = admin_client.get('/api/data/Widgets')
    assert response.status_code == 404
    assert response.get_json()['error'] == 'Table "Widgets" does not exist or is not accessible'


def test_get_entity(admin_client):
    assert admin_client.get('/api/data/PaymentCenters/2').get_json()['name'] == 'VCES'
    assert admin_client.get('/api/data/PaymentCenters/99').status_code == 404


def test_users_are_served_with_permission_lists(admin_client):
    users = admin_client.get('/api/data/Users').get_json()['items']
    manager = next(user for user in users if user['username'] == 'manager')
    assert manager['permissions'] == ['approve', 'read', 'write']


def test_create_supplier_is_audited(admin_client, backend):
    response = admin_client.post('/api/data/Suppliers', json={
        'id': 'SUP003', 'code': 'SUP003', 'name': 'Catering Ltd', 'status': 'Active',
    })
    assert response.status_code == 201
    assert backend.find('Suppliers', 'SUP003')['name'] == 'Catering Ltd'

    audit = [row for row in backend.rows('AuditLog') if row['entityId'] == 'SUP003']
    assert len(audit) == 1
    assert audit[0]['action'] == 'CREATE'
    assert audit[0]['username'] == 'admin'


def test_create_duplicate_id_is_409(admin_client):
    response = admin_client.post('/api/data/Suppliers', json={'id': 'SUP001', 'code': 'X', 'name': 'X'})
    assert response.status_code == 409


def test_remote_constraint_error_is_classified(admin_client):
    response = admin_client.post('/api/data/Expenses', json={
        'date': '2025-03-01', 'amount': 10, 'supplierId': 'NOPE',
    })
    assert response.status_code == 400
    assert response.get_json()['error'] == 'One of the reference IDs is invalid or missing'

    assert admin_client.get('/api/data/error').get_json()['error'] is not None
    admin_client.delete('/api/data/error')
    assert admin_client.get('/api/data/error').get_json()['error'] is None


def test_create_expense_sets_creator(admin_client, backend):
    response = admin_client.post('/api/data/Expenses', json={
        'date': '2025-03-01', 'description': 'Laptops', 'amount': '1200.50',
        'supplierId': 'SUP001', 'paymentTypeId': '1', 'paymentCenterId': '2', 'programId': 'PROG1',
    })
    assert response.status_code == 201
    body = response.get_json()
    assert body['createdBy'] == 'admin'
    stored = backend.find('Expenses', body['id'])
    assert stored['paymentCenter'] == 2
    assert stored['amount'] == 1200.5


def test_update_and_delete_supplier(admin_client, backend):
    response = admin_client.patch('/api/data/Suppliers/SUP002', json={'phone': '555-0100'})
    assert response.status_code == 200
    assert response.get_json()['phone'] == '555-0100'

    response = admin_client.delete('/api/data/Suppliers/SUP002')
    assert response.status_code == 200
    assert backend.find('Suppliers', 'SUP002') is None


def test_update_missing_entity_is_404(admin_client):
    assert admin_client.patch('/api/data/Suppliers/NOPE', json={'name': 'x'}).status_code == 404


def test_audit_log_is_append_only(admin_client, backend):
    admin_client.post('/api/data/Suppliers', json={'id': 'SUP009', 'code': 'SUP009', 'name': 'Nine'})
    entry_id = backend.rows('AuditLog')[0]['id']
    assert admin_client.patch(f'/api/data/AuditLog/{entry_id}', json={'description': 'x'}).status_code == 405
    assert admin_client.delete(f'/api/data/AuditLog/{entry_id}').status_code == 405


def test_viewer_cannot_write(client):
    login(client, 'viewer@kiosc.com', 'ViewerPass1')
    assert client.get('/api/data/Suppliers').status_code == 200
    response = client.post('/api/data/Suppliers', json={'code': 'X', 'name': 'X'})
    assert response.status_code == 403
    assert response.get_json()['required_permission'] == 'write'


def test_manager_cannot_delete_or_write_users(client):
    login(client, 'john@kiosc.com', 'ManagerPass1')
    assert client.delete('/api/data/Suppliers/SUP001').status_code == 403
    assert client.post('/api/data/Users', json={'email': 'x@kiosc.com'}).status_code == 403


def test_journal_approval_needs_approve_permission(client, backend):
    backend.add_auth_user('writer@kiosc.com', 'WriterPass1')
    backend.seed('Users', {'id': 'w-1', 'username': 'writer', 'email': 'writer@kiosc.com',
                           'role': 'user', 'permissions': 'read,write', 'status': 'active'})
    login(client, 'writer@kiosc.com', 'WriterPass1')

    response = client.post('/api/data/JournalEntries', json={
        'id': 'JE1', 'reference': 'JE-001', 'date': '2025-02-01',
        'lines': [
            {'type': 'debit', 'program': 'PROG1', 'paymentCenter': '1', 'amount': 100},
            {'type': 'credit', 'program': 'PROG1', 'paymentCenter': '2', 'amount': 100},
        ],
    })
    assert response.status_code == 201
    assert response.get_json()['totalAmount'] == 100.0
    assert response.get_json()['status'] == 'Draft'

    response = client.patch('/api/data/JournalEntries/JE1', json={'status': 'Approved'})
    assert response.status_code == 403


def test_journal_invalid_transition_is_400(admin_client):
    admin_client.post('/api/data/JournalEntries', json={'id': 'JE2', 'lines': []})
    assert admin_client.patch('/api/data/JournalEntries/JE2', json={'status': 'Approved'}).status_code == 200
    response = admin_client.patch('/api/data/JournalEntries/JE2', json={'status': 'Rejected'})
    assert response.status_code == 400
    assert 'Invalid journal status transition' in response.get_json()['error']


def test_refresh_and_status(admin_client, backend):
    backend.seed('Programs', {'id': 'PROG9', 'name': 'Program 9', 'status': 'Active'})
    response = admin_client.post('/api/data/refresh?collection=Programs')
    assert response.get_json()['count'] == 3

    status = admin_client.get('/api/data/status').get_json()
    assert status['initialized'] is True
    assert status['counts']['Programs'] == 3


# =============================================================================
# BUDGETS
# =============================================================================

def test_budgets_round_trip(admin_client, backend):
    response = admin_client.put('/api/budgets', json={'year': 2025, 'budgets': {'1': '150000', '2': '80000'}})
    assert response.status_code == 200
    assert response.get_json()['message'] == '2 budgets saved successfully!'

    rows = admin_client.get('/api/budgets?year=2025').get_json()['budgets']
    by_center = {row['paymentCenterId']: row['budget'] for row in rows}
    assert by_center == {'1': '150000', '2': '80000', '3': '0', '4': '0'}


def test_budgets_reject_invalid_batch(admin_client, backend):
    response = admin_client.put('/api/budgets', json={'year': 2025, 'budgets': {'1': '100', '2': 'ten'}})
    assert response.status_code == 400
    assert response.get_json()['invalid'] == ['2']
    assert backend.rows('PaymentCenterBudgets') == []


def test_budgets_partial_failure_is_207(admin_client):
    response = admin_client.put('/api/budgets', json={'year': 2025, 'budgets': {'1': '1', '77': '2'}})
    assert response.status_code == 207
    assert 'budget-77-2025' in response.get_json()['failed']


def test_budgets_bad_year(admin_client):
    assert admin_client.get('/api/budgets?year=soon').status_code == 400


# =============================================================================
# ADMIN
# =============================================================================

def test_admin_lists_and_approves_pending_user(admin_client, backend):
    admin_client.post('/api/auth/register', json={'email': 'later@kiosc.com', 'password': 'LaterPass1'})

    pending = admin_client.get('/api/admin/users/pending').get_json()['users']
    assert [user['email'] for user in pending] == ['later@kiosc.com']
    user_id = pending[0]['id']

    response = admin_client.post(f'/api/admin/users/{user_id}/approve')
    assert response.status_code == 200
    assert response.get_json()['user']['status'] == 'active'
    assert backend.find('Users', user_id)['status'] == 'active'
    assert admin_client.get('/api/admin/users/pending').get_json()['count'] == 0


def test_admin_changes_role(admin_client, backend):
    viewer_id = next(row['id'] for row in backend.rows('Users') if row['username'] == 'viewer')
    response = admin_client.patch(f'/api/admin/users/{viewer_id}/role', json={
        'role': 'manager', 'permissions': ['write', 'read'],
    })
    assert response.status_code == 200
    stored = backend.find('Users', viewer_id)
    assert stored['role'] == 'manager'
    assert stored['permissions'] == 'read,write'


def test_admin_rejects_unknown_role(admin_client, backend):
    viewer_id = next(row['id'] for row in backend.rows('Users') if row['username'] == 'viewer')
    response = admin_client.patch(f'/api/admin/users/{viewer_id}/role', json={'role': 'owner'})
    assert response.status_code == 400


def test_non_admin_cannot_manage_users(client):
    login(client, 'john@kiosc.com', 'ManagerPass1')
    assert client.get('/api/admin/users').status_code == 403


# =============================================================================
# SYSTEM
# =============================================================================

def test_health(client, backend):
    response = client.get('/api/system/health')
    assert response.status_code == 200
    assert response.get_json()['checks']['remote']['status'] == 'healthy'

    backend.root_status = 503
    response = client.get('/api/system/health')
    assert response.status_code == 503
    assert response.get_json()['status'] == 'degraded'


def test_connection_check(client):
    body = client.get('/api/system/connection?tables=true').get_json()
    assert body['success'] is True
    assert body['apiKey']['valid'] is True
    assert body['tables']['Suppliers']['accessible'] is True


def test_setup_requires_admin(client):
    assert client.post('/api/system/setup').status_code == 401


def test_setup_status(admin_client):
    assert admin_client.get('/api/system/setup').get_json()['setup'] is True


def test_cors_header_for_local_frontend(client):
    response = client.get('/api/auth/session', headers={'Origin': 'http://localhost:3000'})
    assert response.headers['Access-Control-Allow-Origin'] == 'http://localhost:3000'
