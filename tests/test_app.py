"""
Application-level tests for Flux
Health check, authentication, error shape and request tracing
"""
import json
from datetime import datetime, timedelta, timezone

import jwt


def _token(app, claims, secret=None):
    return jwt.encode(claims, secret or app.config['JWT_SECRET'], algorithm='HS256')


class TestHealth:
    """Test the health endpoint"""

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert json.loads(response.data) == {'status': 'healthy', 'service': 'flux-backend'}

    def test_request_id_generated(self, client):
        response = client.get('/health')
        assert response.headers.get('X-Request-ID')

    def test_request_id_propagated(self, client):
        response = client.get('/health', headers={'X-Request-ID': 'req-abc-123'})
        assert response.headers['X-Request-ID'] == 'req-abc-123'

    def test_malformed_request_id_replaced(self, client):
        response = client.get('/health', headers={'X-Request-ID': 'not valid; ' + 'x' * 80})
        assert response.headers['X-Request-ID'] != 'not valid; ' + 'x' * 80
        assert len(response.headers['X-Request-ID']) == 32

    def test_unknown_route_is_json(self, client):
        response = client.get('/api/nothing-here')
        assert response.status_code == 404
        assert json.loads(response.data)['success'] is False


class TestAuthentication:
    """Test bearer token handling"""

    def test_missing_token(self, client):
        response = client.get('/api/orders')
        assert response.status_code == 401
        data = json.loads(response.data)
        assert data == {
            'success': False,
            'error': 'Missing authorization header',
            'code': 'authentication_required',
        }

    def test_invalid_signature(self, app, client, company):
        token = _token(app, {'sub': company.id}, secret='not-the-secret')
        response = client.get('/api/orders', headers={'Authorization': f'Bearer {token}'})
        assert response.status_code == 401

    def test_expired_token(self, app, client, company):
        token = _token(app, {'sub': company.id, 'exp': datetime.now(timezone.utc) - timedelta(minutes=1)})
        response = client.get('/api/orders', headers={'Authorization': f'Bearer {token}'})
        assert response.status_code == 401
        assert json.loads(response.data)['error'] == 'Token has expired'

    def test_user_id_claim_accepted(self, app, client, company):
        token = _token(app, {'user_id': company.id})
        response = client.get('/api/orders', headers={'Authorization': f'Bearer {token}'})
        assert response.status_code == 200

    def test_unknown_user(self, app, client):
        token = _token(app, {'sub': 'ghost'})
        response = client.get('/api/orders', headers={'Authorization': f'Bearer {token}'})
        assert response.status_code == 401

    def test_banned_user(self, client, make_user, auth_headers):
        banned = make_user('driver', is_banned=True)
        response = client.get('/api/orders', headers=auth_headers(banned))
        assert response.status_code == 403

    def test_role_gate(self, client, driver, auth_headers):
        response = client.post('/api/admin/credits/someone', headers=auth_headers(driver), json={'days': 1})
        assert response.status_code == 403
        assert json.loads(response.data)['code'] == 'not_authorized'


class TestRateLimitKey:
    """Test per-caller rate-limit keys"""

    def test_token_subject_is_the_key(self, app, company, auth_headers):
        from flux.extensions import user_or_ip_key

        with app.test_request_context('/api/orders', headers=auth_headers(company)):
            assert user_or_ip_key() == f'user:{company.id}'

    def test_anonymous_and_bad_tokens_fall_back_to_ip(self, app):
        from flux.extensions import user_or_ip_key

        with app.test_request_context('/api/webhooks/stripe', environ_base={'REMOTE_ADDR': '10.0.0.7'}):
            assert user_or_ip_key() == '10.0.0.7'
        with app.test_request_context('/api/orders', headers={'Authorization': 'Bearer junk'},
                                      environ_base={'REMOTE_ADDR': '10.0.0.7'}):
            assert user_or_ip_key() == '10.0.0.7'
