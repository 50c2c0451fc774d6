"""
Filename Token Module

Infer the speaker cohort, mic token and position family from an IR filename.
Only the three keys needed for cohort statistics and redundancy comparability
are parsed here; display labels are not.

Filenames are expected in the form SPEAKER_MIC_POSITION[_VARIANT...].wav,
e.g. "V30_SM57_CapEdge_BR_1in.wav".
"""

from dataclasses import dataclass
from typing import List

import config

KNOWN_MICS = (
    'sm57', 'sm7b', 'md421', 'md441', 'e906', 'e609', 'r121', 'r92', 'r10',
    'roswell', 'pr30', 'm201', 'm160', 'm88', 'c414', 'u87', 'i5', 'fathead',
    'ksm32', 'tlm103', 'beta57', 'audix', 'royer',
)

# Position token -> family
POSITION_FAMILIES = {
    'cap': 'cap',
    'center': 'cap',
    'centre': 'cap',
    'capedge': 'capedge',
    'cone': 'cone',
    'edge': 'edge',
    'presence': 'presence',
    'fredman': 'fredman',
    'offaxis': 'offaxis',
    'off': 'offaxis',
    'back': 'back',
    'room': 'room',
}

UNKNOWN_TOKEN = 'unknown'


@dataclass(frozen=True)
class IRName:
    """Cohort and gear keys parsed from a filename."""
    filename: str
    speaker: str
    mic: str
    position_family: str


def basename(filename: str) -> str:
    base = (filename or '').replace('\\', '/').split('/')[-1]
    return base or (filename or '')


def _stem_tokens(filename: str) -> List[str]:
    stem = basename(filename)
    if '.' in stem:
        stem = stem.rsplit('.', 1)[0]
    return [t for t in stem.replace('-', '_').replace(' ', '_').lower().split('_') if t]


def infer_speaker_id(filename: str) -> str:
    """Uppercase token before the first underscore ("UNKNOWN" when empty)."""
    first = basename(filename).split('_')[0]
    if '.' in first and '_' not in basename(filename):
        first = first.rsplit('.', 1)[0]
    return first.upper() if first else config.UNKNOWN_SPEAKER


def infer_mic_token(filename: str) -> str:
    """First known mic token after the speaker, else the second token."""
    tokens = _stem_tokens(filename)[1:]
    for token in tokens:
        if token in KNOWN_MICS:
            return token
    return tokens[0] if tokens else UNKNOWN_TOKEN


def infer_position_family(filename: str) -> str:
    """First position token after the mic mapped to its family."""
    tokens = _stem_tokens(filename)[1:]
    mic = infer_mic_token(filename)
    if mic in tokens:
        tokens = tokens[tokens.index(mic) + 1:]
    for token in tokens:
        if token in POSITION_FAMILIES:
            return POSITION_FAMILIES[token]
    return tokens[0] if tokens else UNKNOWN_TOKEN


def parse_ir_name(filename: str) -> IRName:
    return IRName(
        filename=filename,
        speaker=infer_speaker_id(filename),
        mic=infer_mic_token(filename),
        position_family=infer_position_family(filename),
    )
