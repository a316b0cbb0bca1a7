"""
core/notifier.py -- Delivery of action tokens to users.

Routes hand every freshly issued activation or password-reset token to
app.state.notifier. The default implementation only logs; a mail-sending
notifier would implement the same send() signature.
"""

from __future__ import annotations

import logging

logger = logging.getLogger("meetup.notifier")

ACTIVATION = "activation"
PASSWORD_RESET = "password_reset"


class LogNotifier:
    def __init__(self, debug: bool = False) -> None:
        self.debug = debug

    def send(self, kind: str, email: str, token: str) -> None:
        # Tokens are bearer credentials; only print them when debugging locally.
        if self.debug:
            logger.info("%s token for %s: %s", kind, email, token)
        else:
            logger.info("%s token issued for %s", kind, email)
