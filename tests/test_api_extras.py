import os
import unittest
from unittest import mock

import edi_services.api.server as server
from edi_services.config.env import AppConfig
from edi_services.api.server import app

class TestAPIExtras(unittest.TestCase):
    def setUp(self):
        app.testing = True
        # Clear API key and rate limiter state to avoid cross-test leakage
        app.config['API_KEY'] = None
        app.config['RATE_LIMIT_N'] = None
        app.config['RATE_LIMIT_WINDOW_SEC'] = None
        app.config.pop('APP_ENV', None)
        server._recent.clear()
        self.client = app.test_client()

    def test_openapi_endpoint(self):
        rv = self.client.get('/openapi.json')
        self.assertEqual(rv.status_code, 200)
        spec = rv.get_json()
        self.assertIn('openapi', spec)
        self.assertIn('/api/v1/edi/ingest', spec.get('paths', {}))

    def test_rate_limit_ingest(self):
        app.config['RATE_LIMIT_N'] = 1
        app.config['RATE_LIMIT_WINDOW_SEC'] = 1.0
        # First request passes the limiter (400 for the empty body)
        rv1 = self.client.post('/api/v1/edi/ingest', json={})
        self.assertEqual(rv1.status_code, 400)
        rv2 = self.client.post('/api/v1/edi/ingest', json={})
        self.assertEqual(rv2.status_code, 429)
        self.assertEqual(rv2.get_json().get('error'), 'rate_limited')
        self.assertIn('Retry-After', rv2.headers)
        # Read endpoints are not rate limited
        self.assertEqual(self.client.get('/api/v1/edi/status/summary').status_code, 200)

    def test_rate_limit_per_client_ip(self):
        app.config['RATE_LIMIT_N'] = 1
        self.client.post('/api/v1/edi/ingest', json={}, headers={'X-Forwarded-For': '10.0.0.1'})
        rv = self.client.post('/api/v1/edi/ingest', json={}, headers={'X-Forwarded-For': '10.0.0.2'})
        self.assertEqual(rv.status_code, 400)

    def test_auth_api_key(self):
        app.config['API_KEY'] = 'secret'
        rv = self.client.get('/api/v1/edi/audit/not-exist')
        self.assertEqual(rv.status_code, 401)
        self.assertEqual(rv.get_json()['error'], 'unauthorized')
        rv2 = self.client.get('/api/v1/edi/audit/not-exist', headers={'X-API-Key': 'secret'})
        self.assertEqual(rv2.status_code, 404)
        self.assertEqual(self.client.get('/dev/stats').status_code, 401)
        # Health stays open
        self.assertEqual(self.client.get('/actuator/health').status_code, 200)

    def test_mappings(self):
        profiles = self.client.get('/api/v1/mappings').get_json()
        keys = {(p['retailerId'], p['transactionSetCode']) for p in profiles}
        self.assertIn(('TARGET', '850'), keys)
        rv = self.client.get('/api/v1/mappings/target/850')
        self.assertEqual(rv.status_code, 200)
        self.assertEqual(rv.get_json()['headerMappings'][0]['targetField'], 'poNumber')
        missing = self.client.get('/api/v1/mappings/costco/850')
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.get_json()['error'], 'PROFILE_NOT_FOUND')

    def test_documents_rejects_unknown_status(self):
        rv = self.client.get('/api/v1/edi/documents?status=DONE')
        self.assertEqual(rv.status_code, 400)

    def test_health(self):
        rv = self.client.get('/actuator/health')
        self.assertEqual(rv.status_code, 200)
        body = rv.get_json()
        self.assertEqual(body['status'], 'UP')
        self.assertGreaterEqual(body['components']['mappingProfiles']['loaded'], 2)

    def test_dev_stats(self):
        body = self.client.get('/dev/stats').get_json()
        self.assertIn('totalRecords', body)
        self.assertEqual(set(body['byStatus']), {'RECEIVED', 'PARSED', 'VALIDATED', 'TRANSMITTED', 'ACKNOWLEDGED', 'FAILED'})

    def test_purge_guarded_outside_local(self):
        app.config['APP_ENV'] = 'production'
        rv = self.client.delete('/dev/audit-log')
        self.assertEqual(rv.status_code, 403)
        self.assertEqual(rv.get_json()['error'], 'purge_disabled')

    def test_purge_disabled_when_app_env_unset(self):
        with mock.patch.object(server, 'CONFIG', AppConfig()):
            rv = self.client.delete('/dev/audit-log')
        self.assertEqual(rv.status_code, 403)
        self.assertEqual(rv.get_json()['error'], 'purge_disabled')

    def test_purge_enabled_by_config_environment(self):
        with mock.patch.object(server, 'CONFIG', AppConfig(environment='local')):
            self.assertEqual(self.client.delete('/dev/audit-log').status_code, 200)

    def test_api_key_read_from_environment(self):
        app.config.pop('API_KEY', None)
        with mock.patch.dict(os.environ, {'API_KEY': 'from-env'}):
            self.assertEqual(self.client.get('/dev/stats').status_code, 401)
            rv = self.client.get('/dev/stats', headers={'X-API-Key': 'from-env'})
        self.assertEqual(rv.status_code, 200)

    def test_purge_in_test_env(self):
        app.config['APP_ENV'] = 'test'
        server.PIPELINE.tracker.begin('TARGET', source_file_path='purge-me.edi')
        rv = self.client.delete('/dev/audit-log')
        self.assertEqual(rv.status_code, 200)
        self.assertGreaterEqual(rv.get_json()['deleted'], 1)
        self.assertEqual(self.client.get('/dev/audit-log').get_json(), [])


if __name__ == '__main__':
    unittest.main()
