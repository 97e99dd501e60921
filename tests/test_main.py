import base64
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner
from telegram.error import NetworkError

from main import _poll, cli


class TestPoll:
    @pytest.mark.asyncio
    async def test_failed_start_closes_handler(self):
        handler = MagicMock()
        handler.aclose = AsyncMock()
        transport = MagicMock()
        transport.start = AsyncMock(side_effect=NetworkError("offline"))
        transport.stop = AsyncMock()
        settings = MagicMock(telegram_token="123:abc", http_timeout=5.0)

        with patch("workflowbot.telegram.handler.CommandHandler.from_settings", return_value=handler), \
                patch("workflowbot.telegram.transport.PollingTransport", return_value=transport):
            with pytest.raises(NetworkError):
                await _poll(settings)

        transport.stop.assert_awaited_once()
        handler.aclose.assert_awaited_once()


class TestGenSecret:
    def test_prints_32_byte_key(self):
        result = CliRunner().invoke(cli, ["gen-secret"])
        assert result.exit_code == 0
        assert len(base64.b64decode(result.output.strip())) == 32
