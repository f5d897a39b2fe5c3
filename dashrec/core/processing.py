"""Audio processing utilities for dashrec.

This module provides the sample-level helpers used by the microphone
capability: input level calculation, gain adjustment and driver detection.
"""

import numpy as np
from loguru import logger


def calculate_db_level(audio_data: bytes) -> float:
    """Calculate dB level from int16 audio data.

    Args:
        audio_data: Raw audio bytes

    Returns:
        dB level (0-120 range)
    """
    try:
        audio_array = np.frombuffer(audio_data, dtype=np.int16)
        if audio_array.size == 0:
            return 0.0

        rms = np.sqrt(np.mean(audio_array.astype(float) ** 2))

        # Reference is max int16 value, shifted into 0-120
        max_int16 = 32768
        if rms > 0:
            db = 20 * np.log10(rms / max_int16)
            db = max(0.0, min(120.0, db + 120))
        else:
            db = 0.0

        return float(db)
    except Exception as e:
        logger.debug(f"Error calculating dB level: {e}")
        return 0.0


def apply_gain(audio_data: bytes, gain_factor: float = 1.0) -> bytes:
    """Apply gain/amplification to audio data.

    Args:
        audio_data: Raw audio bytes (int16)
        gain_factor: Gain multiplier (1.0 = no change, 2.0 = +6dB, 0.5 = -6dB)

    Returns:
        Amplified audio data as bytes
    """
    if gain_factor == 1.0:
        return audio_data

    try:
        audio_array = np.frombuffer(audio_data, dtype=np.int16).astype(np.float32)
        audio_array *= gain_factor

        # Clip before the cast so loud samples saturate instead of wrapping
        max_int16 = 32767
        audio_array = np.clip(audio_array, -max_int16, max_int16)

        return audio_array.astype(np.int16).tobytes()
    except Exception as e:
        logger.debug(f"Error applying gain: {e}")
        return audio_data


def detect_driver_type(device_name: str) -> str:
    """Detect the audio driver type from device name.

    Args:
        device_name: The name of the audio device

    Returns:
        Driver type: 'pulse', 'alsa', 'jack', 'usb' or 'default'
    """
    name_lower = device_name.lower()

    if 'pulse' in name_lower or 'pipewire' in name_lower:
        return 'pulse'
    elif 'alsa' in name_lower or 'hw:' in name_lower or 'plughw' in name_lower:
        return 'alsa'
    elif 'jack' in name_lower:
        return 'jack'
    elif 'usb' in name_lower:
        return 'usb'
    else:
        return 'default'
