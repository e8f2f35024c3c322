"""Token logging - formats token updates and outputs them to console and file."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from ..models import Token

LOGGER_NAME = "token_scanner.tokens"


class TokenFormatter(logging.Formatter):
    """Custom formatter for token update records."""

    TOKEN_FORMAT = (
        "{timestamp} | {reason:<8} | {chain:<4} {symbol:<10} "
        "price=${price:,.6f} mcap=${mcap:,.0f} vol=${volume:,.0f} "
        "liq=${liquidity:,.0f} ({liquidity_change:+.2f}%) "
        "txns={buys}/{sells}{flags}"
    )

    def format(self, record: logging.LogRecord) -> str:
        if hasattr(record, "token"):
            return self._format_token(record)
        return super().format(record)

    def _format_token(self, record: logging.LogRecord) -> str:
        token: Token = record.token
        flags = []
        if token.audit.honeypot:
            flags.append("HONEYPOT")
        if token.audit.contract_verified:
            flags.append("verified")
        if token.migration_progress is not None:
            flags.append(f"migration={token.migration_progress:.1f}%")

        return self.TOKEN_FORMAT.format(
            timestamp=self.formatTime(record, "%Y-%m-%d %H:%M:%S"),
            reason=getattr(record, "reason", "update").upper(),
            chain=token.chain,
            symbol=token.symbol,
            price=token.price_usd,
            mcap=token.market_cap,
            volume=token.volume_usd,
            liquidity=token.liquidity.current,
            liquidity_change=token.liquidity.change_percent,
            buys=token.transactions.buys,
            sells=token.transactions.sells,
            flags=f" [{', '.join(flags)}]" if flags else "",
        )


class TokenLogger:
    """Handles token update output to console and an optional rotating file."""

    def __init__(
        self,
        log_file: str | Path | None = None,
        log_level: str = "INFO",
        max_file_size_mb: int = 10,
        backup_count: int = 5,
    ):
        self.log_file = Path(log_file) if log_file else None
        self.log_level = getattr(logging, log_level.upper(), logging.INFO)
        self.max_file_size = max_file_size_mb * 1024 * 1024
        self.backup_count = backup_count

        self._logger = logging.getLogger(LOGGER_NAME)
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging handlers."""
        self._logger.setLevel(self.log_level)
        self._logger.handlers.clear()
        self._logger.propagate = False

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(TokenFormatter())
        self._logger.addHandler(console_handler)

        if self.log_file is None:
            return

        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            self.log_file,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count,
        )
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(TokenFormatter())
        self._logger.addHandler(file_handler)

    def log_token(self, token: Token, reason: str = "update", level: int = logging.INFO):
        """Log one token summary line."""
        record = self._logger.makeRecord(
            name=LOGGER_NAME,
            level=level,
            fn="",
            lno=0,
            msg=f"Token {reason}",
            args=(),
            exc_info=None,
        )
        record.token = token
        record.reason = reason
        self._logger.handle(record)

    def close(self):
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)


def setup_app_logging(level: str = "INFO"):
    """Set up application-wide logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from libraries
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
