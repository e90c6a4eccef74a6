"""
PlayStation SPU ADSR conversion.

ADSR1 (16 bits):
    15     attack mode (0 = linear, 1 = exponential)
    14-8   attack rate
    7-4    decay rate (x4)
    3-0    sustain level ((n + 1) * 0x800)
ADSR2 (16 bits):
    15     sustain mode
    14     sustain direction (0 = increase, 1 = decrease)
    12-6   sustain rate
    5      release mode
    4-0    release rate (x4)

Phase times are found by stepping the SPU envelope generator, one step
per `cycles` output samples.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

SPU_SAMPLE_RATE = 44100
ENVELOPE_MAX = 0x7FFF
RATE_NEVER = 0x7F


@dataclass
class PSXEnvelope:
    """Unpacked ADSR fields and derived phase times (seconds)."""
    attack_mode: int
    attack_rate: int
    decay_rate: int
    sustain_level_raw: int
    sustain_mode: int
    sustain_direction: int
    sustain_rate: int
    release_mode: int
    release_rate: int

    attack_time: Optional[float] = None
    decay_time: Optional[float] = None
    sustain_level: float = 1.0
    sustain_time: Optional[float] = None
    release_time: Optional[float] = None

    @property
    def attack_exponential(self) -> bool:
        return self.attack_mode == 1

    @property
    def sustain_decreasing(self) -> bool:
        return self.sustain_direction == 1


def envelope_step(rate: int, level: int, decreasing: bool,
                  exponential: bool) -> Tuple[int, int]:
    """Return (level delta, cycles) for one envelope step at `level`."""
    shift = rate >> 2
    cycles = 1 << max(0, shift - 11)
    step = (-8 + (rate & 3)) if decreasing else (7 - (rate & 3))
    step <<= max(0, 11 - shift)

    if exponential:
        if decreasing:
            step = (step * level) >> 15
        elif level > 0x6000:
            cycles *= 4

    return step, cycles


def phase_time(rate: int, start: int, target: int, decreasing: bool,
               exponential: bool, sample_rate: int = SPU_SAMPLE_RATE) -> Optional[float]:
    """Seconds for the envelope to move from `start` to `target`.

    Returns None for rate 0x7F, which never advances.
    """
    if rate >= RATE_NEVER:
        return None

    level = start
    ticks = 0
    while (level > target) if decreasing else (level < target):
        step, cycles = envelope_step(rate, level, decreasing, exponential)
        if step == 0:
            return None
        level += step
        ticks += cycles

    return ticks / sample_rate


def convert_adsr(adsr1: int, adsr2: int, sample_rate: int = SPU_SAMPLE_RATE) -> PSXEnvelope:
    """Unpack SPU ADSR words and compute the phase times.

    Attack runs from silence to full scale, decay from full scale to the
    sustain level, sustain to full scale or silence depending on its
    direction, and release from full scale to silence.
    """
    env = PSXEnvelope(
        attack_mode=(adsr1 >> 15) & 0x01,
        attack_rate=(adsr1 >> 8) & 0x7F,
        decay_rate=(adsr1 >> 4) & 0x0F,
        sustain_level_raw=adsr1 & 0x0F,
        sustain_mode=(adsr2 >> 15) & 0x01,
        sustain_direction=(adsr2 >> 14) & 0x01,
        sustain_rate=(adsr2 >> 6) & 0x7F,
        release_mode=(adsr2 >> 5) & 0x01,
        release_rate=adsr2 & 0x1F,
    )

    sustain_level = min((env.sustain_level_raw + 1) * 0x800, ENVELOPE_MAX)
    env.sustain_level = sustain_level / ENVELOPE_MAX

    env.attack_time = phase_time(env.attack_rate, 0, ENVELOPE_MAX, False,
                                 env.attack_exponential, sample_rate)
    env.decay_time = phase_time(env.decay_rate * 4, ENVELOPE_MAX, sustain_level, True,
                                True, sample_rate)

    if env.sustain_decreasing:
        env.sustain_time = phase_time(env.sustain_rate, sustain_level, 0, True,
                                      env.sustain_mode == 1, sample_rate)
    else:
        env.sustain_time = phase_time(env.sustain_rate, sustain_level, ENVELOPE_MAX, False,
                                      env.sustain_mode == 1, sample_rate)

    env.release_time = phase_time(env.release_rate * 4, ENVELOPE_MAX, 0, True,
                                  env.release_mode == 1, sample_rate)
    return env
