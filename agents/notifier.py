"""
ChartPulse - Verdict Notifier

Visual log alert plus an audible cue keyed by verdict action. Sound
sources are tried in order: custom file in the sounds directory, the
platform's system sound, then the terminal bell. Notification is a side
effect only; nothing here raises.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Awaitable, Callable

from chartpulse.config import SoundConfig
from chartpulse.logging import get_logger
from chartpulse.models import TradingVerdict, VerdictAction

logger = get_logger(__name__, component="notifier")

HIGH_CONFIDENCE = 80

SYSTEM_SOUNDS: dict[str, dict[VerdictAction, str]] = {
    "darwin": {
        VerdictAction.LONG: "Glass",
        VerdictAction.SHORT: "Sosumi",
        VerdictAction.HOLD: "Tink",
    },
    "linux": {
        VerdictAction.LONG: "dialog-information",
        VerdictAction.SHORT: "dialog-warning",
        VerdictAction.HOLD: "dialog-question",
    },
    "win32": {
        VerdictAction.LONG: "Asterisk",
        VerdictAction.SHORT: "Exclamation",
        VerdictAction.HOLD: "Question",
    },
}

ALERT_ICONS = {
    VerdictAction.LONG: "🟢 🚀",
    VerdictAction.SHORT: "🔴 📉",
    VerdictAction.HOLD: "🟡 ⏸️",
}

# Runs a command, returns its exit code
CommandRunner = Callable[[list[str]], Awaitable[int]]


async def run_command(argv: list[str]) -> int:
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )
    return await proc.wait()


class SoundNotifier:
    """Plays verdict alerts; every failure is logged and swallowed."""

    def __init__(
        self,
        config: SoundConfig,
        runner: CommandRunner = run_command,
        platform: str = sys.platform,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.runner = runner
        self.platform = "linux" if platform.startswith("linux") else platform
        self.sleep = sleep

    def custom_sound(self, action: VerdictAction) -> Path:
        return Path(self.config.sounds_dir) / f"{action.value.lower()}.wav"

    def _file_command(self, path: str) -> list[str] | None:
        if self.platform == "darwin":
            return ["afplay", "-v", str(self.config.volume), path]
        if self.platform == "linux":
            return ["paplay", path]
        if self.platform == "win32":
            return [
                "powershell",
                "-c",
                f"(New-Object Media.SoundPlayer '{path}').PlaySync()",
            ]
        return None

    def _system_command(self, action: VerdictAction) -> list[str] | None:
        name = SYSTEM_SOUNDS.get(self.platform, {}).get(action)
        if name is None:
            return None
        if self.platform == "darwin":
            return self._file_command(f"/System/Library/Sounds/{name}.aiff")
        if self.platform == "linux":
            return self._file_command(f"/usr/share/sounds/freedesktop/stereo/{name}.oga")
        return ["powershell", "-c", f"[System.Media.SystemSounds]::{name}.Play()"]

    async def _try(self, argv: list[str] | None, source: str) -> bool:
        if argv is None:
            return False
        try:
            code = await self.runner(argv)
        except (OSError, ValueError) as e:
            logger.debug("sound_command_failed", source=source, error=str(e))
            return False
        if code != 0:
            logger.debug("sound_command_failed", source=source, exit_code=code)
        return code == 0

    def _bell(self) -> None:
        sys.stdout.write("\a")
        sys.stdout.flush()

    async def play(self, action: VerdictAction) -> bool:
        """Play the sound for one action. Returns True if anything played."""
        if not self.config.enabled:
            logger.debug("sound_disabled")
            return False

        try:
            custom = self.custom_sound(action)
            if custom.exists() and await self._try(self._file_command(str(custom)), "custom"):
                return True
            if await self._try(self._system_command(action), "system"):
                return True
            if self.config.fallback_to_beep:
                self._bell()
                return True
        except Exception as e:
            logger.warning("sound_failed", action=action.value, error=str(e))
        return False

    async def alert(self, verdict: TradingVerdict) -> None:
        """Visual + audible alert for a final verdict."""
        try:
            logger.info(
                "trading_alert",
                alert=f"{ALERT_ICONS[verdict.action]} {verdict.action.value}",
                confidence=verdict.confidence,
                reason=verdict.key_reason,
            )
            await self.play(verdict.action)

            if verdict.confidence >= HIGH_CONFIDENCE:
                logger.info("high_confidence_trade", confidence=verdict.confidence)
                await self.sleep(0.3)
                await self.play(verdict.action)
        except Exception as e:
            logger.warning("trading_alert_failed", error=str(e))

    async def test_all(self) -> None:
        """Play every action's sound in turn."""
        for action in VerdictAction:
            logger.info("sound_test", action=action.value)
            await self.play(action)
            await self.sleep(1.0)
