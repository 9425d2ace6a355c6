from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml  # PyYAML

from utils.ml_logging import get_logger

logger = get_logger(__name__)

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

DEFAULT_AGENT_CONFIG = Path(__file__).parent / "agent_store" / "waiter_agent.yaml"


def _resolve_env(value: Any) -> Any:
    """
    Resolve ${ENV_VAR} placeholders recursively in scalar/list/dict values.

    :param value: Arbitrary nested structure with optional ${VAR} strings.
    :return: Value with environment expansions applied.
    """
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            return os.getenv(match.group(1), "")
        return _ENV_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_resolve_env(v) for v in value]
    if isinstance(value, dict):
        return {k: _resolve_env(v) for k, v in value.items()}
    return value


def _load_yaml(path: str | Path) -> Dict[str, Any]:
    """
    Load YAML from a path and resolve ${ENV_VAR} placeholders.

    :raises FileNotFoundError: If file does not exist.
    :raises ValueError: If YAML is empty or invalid.
    """
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"YAML not found: {p}")
    with p.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML at {p} (expected mapping).")
    return _resolve_env(data)  # type: ignore[return-value]


@dataclass(frozen=True)
class RealtimeSessionCfg:
    """
    Voice/VAD/codec configuration applied via session.update.

    :param voice: Upstream voice name.
    :param modalities: Output modalities requested from the model.
    :param input_audio_format: Client audio codec forwarded upstream.
    :param output_audio_format: Codec of audio deltas relayed to the client.
    :param transcription_model: Model used for user-side transcripts.
    :param vad_threshold: VAD sensitivity (0.0-1.0).
    :param vad_prefix_ms: VAD prefix padding (ms).
    :param vad_silence_ms: VAD silence duration (ms).
    """

    voice: str = "alloy"
    modalities: Tuple[str, ...] = ("text", "audio")
    input_audio_format: str = "pcm16"
    output_audio_format: str = "pcm16"
    transcription_model: str = "whisper-1"
    tool_choice: str = "auto"
    vad_type: str = "server_vad"
    vad_threshold: float = 0.5
    vad_prefix_ms: int = 300
    vad_silence_ms: int = 500


@dataclass(frozen=True)
class WaiterAgentConfig:
    """Name, prompt template and realtime session settings of the waiter agent."""

    name: str = "WaiterAgent"
    prompt_template: str = "waiter_system.jinja"
    session: RealtimeSessionCfg = field(default_factory=RealtimeSessionCfg)

    def build_session_update(
        self, instructions: str, tools: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """
        Build the ``session`` object of the upstream ``session.update`` handshake.

        :param instructions: Rendered system instructions.
        :param tools: Tool schemas in realtime function form.
        """
        s = self.session
        return {
            "modalities": list(s.modalities),
            "instructions": instructions,
            "voice": s.voice,
            "input_audio_format": s.input_audio_format,
            "output_audio_format": s.output_audio_format,
            "input_audio_transcription": {"model": s.transcription_model},
            "turn_detection": {
                "type": s.vad_type,
                "threshold": s.vad_threshold,
                "prefix_padding_ms": s.vad_prefix_ms,
                "silence_duration_ms": s.vad_silence_ms,
            },
            "tools": tools,
            "tool_choice": s.tool_choice,
        }


def load_waiter_agent(path: Optional[str | Path] = None) -> WaiterAgentConfig:
    """
    Build the waiter agent configuration from YAML.

    Missing keys, and placeholders that expand to empty strings, fall back to
    the dataclass defaults.

    :param path: YAML file; the bundled ``waiter_agent.yaml`` when omitted.
    :raises FileNotFoundError: If the file does not exist.
    :raises ValueError: If YAML is invalid or a numeric field is malformed.
    """
    cfg = _load_yaml(path or DEFAULT_AGENT_CONFIG)
    defaults = RealtimeSessionCfg()

    agent_cfg = cfg.get("agent") or {}
    session_cfg = cfg.get("session") or {}
    vad_cfg = session_cfg.get("turn_detection") or {}

    def pick(section: Dict[str, Any], key: str, default: Any) -> Any:
        value = section.get(key)
        return default if value in (None, "") else value

    try:
        session = RealtimeSessionCfg(
            voice=str(pick(session_cfg, "voice", defaults.voice)),
            modalities=tuple(pick(session_cfg, "modalities", defaults.modalities)),
            input_audio_format=str(
                pick(session_cfg, "input_audio_format", defaults.input_audio_format)
            ),
            output_audio_format=str(
                pick(session_cfg, "output_audio_format", defaults.output_audio_format)
            ),
            transcription_model=str(
                pick(session_cfg, "transcription_model", defaults.transcription_model)
            ),
            tool_choice=str(pick(session_cfg, "tool_choice", defaults.tool_choice)),
            vad_type=str(pick(vad_cfg, "type", defaults.vad_type)),
            vad_threshold=float(pick(vad_cfg, "threshold", defaults.vad_threshold)),
            vad_prefix_ms=int(pick(vad_cfg, "prefix_padding_ms", defaults.vad_prefix_ms)),
            vad_silence_ms=int(
                pick(vad_cfg, "silence_duration_ms", defaults.vad_silence_ms)
            ),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid waiter agent session config: {e}") from e

    agent = WaiterAgentConfig(
        name=str(pick(agent_cfg, "name", "WaiterAgent")),
        prompt_template=str(pick(agent_cfg, "prompt_template", "waiter_system.jinja")),
        session=session,
    )
    logger.info(
        "Built WaiterAgentConfig | name=%s | voice=%s | vad=%s/%s/%sms",
        agent.name,
        session.voice,
        session.vad_threshold,
        session.vad_prefix_ms,
        session.vad_silence_ms,
    )
    return agent
