"""
Unattended authentication for shell sessions.

The AuthenticationMediator answers the server's authentication requests
from the stored secret, with no human present:

- keyboard-interactive: every prompt whose text contains the password cue
  (case-insensitive, "password" by default) is answered with the secret;
  any other prompt is left unanswered, which the server treats as a failed
  response
- password: the secret is supplied directly

The mediator keeps no session state beyond the secret and the cue, so the
transport may re-prompt as often as it likes.
"""
from __future__ import annotations

import logging
import re
from typing import Callable, Sequence

logger = logging.getLogger(__name__)

# asyncssh hands keyboard-interactive prompts over as (text, echo) pairs
Prompt = tuple[str, bool]


class AuthenticationMediator:
    """
    Answers authentication challenges from a stored secret.

    Usage:
        mediator = AuthenticationMediator("s3cr3t")
        mediator.answer([("Password: ", False), ("Token: ", True)])
        # -> ["s3cr3t", None]
    """

    def __init__(
        self,
        secret: str,
        prompt_cue: str = "password",
        on_challenge: Callable[[str], None] | None = None,
    ) -> None:
        """
        Initialise the mediator.

        Args:
            secret: Password or challenge-response secret
            prompt_cue: Text identifying a password prompt (case-insensitive)
            on_challenge: Optional diagnostic callback receiving a short
                          description of each challenge handled
        """
        assert secret, "secret must be non-empty"
        assert prompt_cue, "prompt_cue must be non-empty"
        self._secret = secret
        self._cue = re.compile(re.escape(prompt_cue), re.IGNORECASE)
        self._on_challenge = on_challenge
        self._challenge_count = 0

    @property
    def challenge_count(self) -> int:
        """Number of keyboard-interactive challenges answered so far."""
        return self._challenge_count

    def matches(self, prompt: str) -> bool:
        """Return True if prompt asks for the password."""
        return bool(self._cue.search(prompt))

    def answer(self, prompts: Sequence[Prompt]) -> list[str | None]:
        """
        Answer one keyboard-interactive challenge.

        Args:
            prompts: (prompt_text, echo) pairs from the server

        Returns:
            One entry per prompt: the secret for password prompts,
            None for prompts left unanswered
        """
        self._challenge_count += 1
        answers: list[str | None] = [
            self._secret if self.matches(text) else None
            for text, _echo in prompts
        ]

        answered = sum(1 for a in answers if a is not None)
        self._report(
            f"keyboard-interactive challenge #{self._challenge_count}: "
            f"{answered}/{len(prompts)} prompts answered"
        )
        return answers

    def responses(self, prompts: Sequence[Prompt]) -> list[str]:
        """
        Wire form of answer(): unanswered prompts become empty responses.

        The keyboard-interactive protocol requires one response per prompt.
        """
        return [a if a is not None else "" for a in self.answer(prompts)]

    def password(self) -> str:
        """Return the secret for plain password authentication."""
        self._report("sending password")
        return self._secret

    def _report(self, message: str) -> None:
        logger.debug(message)
        if self._on_challenge is not None:
            self._on_challenge(message)
