import unittest
import io
import json
import logging
import os
from pathlib import Path
from unittest import mock

from edi_services.config.env import DEFAULT_MAPPINGS_DIR, get_api_config, get_app_config, get_shopify_config
from edi_services.config.logging_config import LogContext, StructuredFormatter, get_logger
from edi_services.errors import MalformedSegment


class TestConfig(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            cfg = get_app_config()
            self.assertEqual(cfg.environment, "production")
            self.assertEqual(cfg.mappings_dir, DEFAULT_MAPPINGS_DIR)
            self.assertIsNone(cfg.dead_letter_dir)
            self.assertIsNone(cfg.audit_dir)
            self.assertFalse(cfg.purge_allowed)
            self.assertIsNone(get_api_config().api_key)
            shop = get_shopify_config()
            self.assertFalse(shop.configured)
            self.assertEqual((shop.bucket_capacity, shop.refill_rate_per_sec), (40, 2.0))

    def test_env_overrides(self):
        env = {"APP_ENV": "Production", "EDI_MAPPINGS_DIR": "/srv/mappings", "EDI_DLQ_DIR": "/srv/dlq",
               "EDI_AUDIT_DIR": "/srv/audit", "SHOPIFY_BUCKET_CAPACITY": "80",
               "JOB_WORKERS": "4", "API_KEY": "k", "RATE_LIMIT_N": "10",
               "SHOPIFY_STORE_DOMAIN": "acme.myshopify.com", "SHOPIFY_ACCESS_TOKEN": "t",
               "SHOPIFY_MAX_ATTEMPTS": "5"}
        with mock.patch.dict(os.environ, env, clear=True):
            cfg = get_app_config()
            self.assertEqual(cfg.environment, "production")
            self.assertFalse(cfg.purge_allowed)
            self.assertEqual(cfg.mappings_dir, Path("/srv/mappings"))
            self.assertEqual(cfg.dead_letter_dir, Path("/srv/dlq"))
            self.assertEqual(cfg.job_workers, 4)
            self.assertEqual(get_api_config().rate_limit_n, 10)
            shop = get_shopify_config()
            self.assertTrue(shop.configured)
            self.assertEqual(shop.max_attempts, 5)
            self.assertEqual(shop.bucket_capacity, 80)
            self.assertEqual(cfg.audit_dir, Path("/srv/audit"))

    def test_purge_requires_opt_in_environment(self):
        for env, allowed in (({}, False), ({"APP_ENV": ""}, False), ({"APP_ENV": "Local"}, True),
                             ({"APP_ENV": "test"}, True), ({"APP_ENV": "staging"}, False)):
            with mock.patch.dict(os.environ, env, clear=True):
                self.assertEqual(get_app_config().purge_allowed, allowed, env)


class TestStructuredLogging(unittest.TestCase):
    def setUp(self):
        self.stream = io.StringIO()
        self.handler = logging.StreamHandler(self.stream)
        self.handler.setFormatter(StructuredFormatter())
        self.logger = get_logger("tests.structured")
        self.logger.addHandler(self.handler)
        self.logger.setLevel(logging.INFO)

    def tearDown(self):
        self.logger.removeHandler(self.handler)
        LogContext.clear()

    def _records(self):
        return [json.loads(line) for line in self.stream.getvalue().splitlines()]

    def test_context_fields_are_included(self):
        with LogContext.bind(correlation_id="c-1", retailer_id="TARGET"):
            self.logger.info("parsed %d lines", 2)
        self.logger.info("outside")
        inside, outside = self._records()
        self.assertEqual(inside["message"], "parsed 2 lines")
        self.assertEqual(inside["correlation_id"], "c-1")
        self.assertEqual(inside["logger"], "edi_services.tests.structured")
        self.assertNotIn("correlation_id", outside)

    def test_exception_code_is_logged(self):
        try:
            raise MalformedSegment("bad", "BEG", 4)
        except MalformedSegment:
            self.logger.exception("failed")
        rec = self._records()[0]
        self.assertEqual(rec["exc_type"], "MalformedSegment")
        self.assertEqual(rec["exc_code"], "MALFORMED_SEGMENT")

    def test_extra_fields(self):
        self.logger.info("stage done", extra={"duration_ms": 12})
        self.assertEqual(self._records()[0]["duration_ms"], 12)


if __name__ == '__main__':
    unittest.main()
