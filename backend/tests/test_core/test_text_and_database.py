"""
Unit tests for text helpers and the connection retry logic

Author: Backoffice API team
Date: 2026-02-09
"""
import psycopg2
import pytest
from unittest.mock import MagicMock, patch

from backoffice.core.database import get_db_connection_with_retry
from backoffice.core.text import normalize_phone_br, only_digits, strip_accents


class TestText:

    def test_only_digits(self):
        assert only_digits("123.456.789-09") == "12345678909"
        assert only_digits(None) == ""

    def test_strip_accents(self):
        assert strip_accents("São Paulo") == "Sao Paulo"
        assert strip_accents("Florianópolis") == "Florianopolis"

    def test_normalize_phone_adds_country_code(self):
        assert normalize_phone_br("(11) 98765-4321") == "5511987654321"
        assert normalize_phone_br("1134567890") == "551134567890"

    def test_normalize_phone_keeps_international(self):
        assert normalize_phone_br("+55 11 98765-4321") == "5511987654321"


class TestConnectionRetry:

    @patch('backoffice.core.database.time.sleep')
    @patch('backoffice.core.database.psycopg2.connect')
    def test_retries_operational_error_then_connects(self, mock_connect, mock_sleep):
        # Arrange: first attempt fails, second succeeds
        conn = MagicMock()
        mock_connect.side_effect = [psycopg2.OperationalError("SSL connection has been closed unexpectedly"), conn]

        # Act
        result = get_db_connection_with_retry(max_retries=3, retry_delay=0.5)

        # Assert
        assert result is conn
        assert mock_connect.call_count == 2
        mock_sleep.assert_called_once_with(0.5)

    @patch('backoffice.core.database.time.sleep')
    @patch('backoffice.core.database.psycopg2.connect')
    def test_raises_after_last_attempt(self, mock_connect, mock_sleep):
        mock_connect.side_effect = psycopg2.OperationalError("down")

        with pytest.raises(psycopg2.OperationalError):
            get_db_connection_with_retry(max_retries=2, retry_delay=1.0)

        assert mock_connect.call_count == 2
        mock_sleep.assert_called_once_with(1.0)
