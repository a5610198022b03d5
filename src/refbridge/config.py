"""Environment-driven settings for a bridge process."""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

ReplyStream = Literal["stderr", "stdout"]

_TRUTHY: frozenset[str] = frozenset({"1", "true", "yes", "on"})
_REPLY_STREAMS: frozenset[str] = frozenset({"stderr", "stdout"})


@dataclass(frozen=True)
class BridgeConfig:
    """Settings for one bridge process.

    :param debug: Enable debug logging of traffic and failures.
    :param reply_stream: Standard stream that carries replies and notifications.
    """

    debug: bool = False
    reply_stream: ReplyStream = "stderr"

    def __post_init__(self) -> None:
        is_allowed: bool = self.reply_stream in _REPLY_STREAMS
        if is_allowed is False:
            raise ValueError(
                "reply_stream must be one of: "
                + ", ".join(sorted(_REPLY_STREAMS))
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BridgeConfig":
        """Build settings from environment variables.

        ``DEBUG`` containing ``refbridge`` or a truthy ``REFBRIDGE_DEBUG``
        turns on debug logging. ``REFBRIDGE_REPLY_STREAM`` selects the reply
        stream.

        :param environ: Environment mapping, ``os.environ`` when omitted.
        :returns: Parsed settings.
        :raises ValueError: If ``REFBRIDGE_REPLY_STREAM`` is unsupported.
        """
        env: Mapping[str, str] = os.environ if environ is None else environ
        debug_tokens: str = env.get("DEBUG", "")
        debug_flag: str = env.get("REFBRIDGE_DEBUG", "").strip().lower()
        debug: bool = "refbridge" in debug_tokens or debug_flag in _TRUTHY
        reply_stream: str = env.get("REFBRIDGE_REPLY_STREAM", "stderr").strip().lower()
        return cls(debug=debug, reply_stream=reply_stream)  # type: ignore[arg-type]
