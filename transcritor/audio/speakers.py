"""
Speaker attribution for interview transcripts using an OpenAI chat model.

The model receives an indexed transcript (``[i] text`` per segment) and
answers with a JSON object mapping segment indices to speaker roles:
"Entrevistador" for whoever asks the questions, "Entrevistado 1",
"Entrevistado 2", ... for respondents, or "Participante" when speakers
cannot be told apart.

This is the one best-effort step of the pipeline. SpeakerAttributor.attribute
catches every failure (API errors, malformed JSON) and returns the segments
it was given, unlabeled. Do not make it raise: a transcript without speaker
labels is still a valid result.
"""

import json
import logging
from typing import Dict, List, Optional

from ..config import ConfigManager
from ..models import Segment

logger = logging.getLogger(__name__)

MAX_TRANSCRIPT_CHARS = 8000

INTERVIEWER_LABEL = "Entrevistador"
INTERVIEWEE_LABEL = "Entrevistado"
FALLBACK_LABEL = "Participante"

SYSTEM_PROMPT = f"""Você identifica falantes em transcrições de entrevistas de pesquisa.
Cada linha da transcrição começa com o índice do segmento entre colchetes.
Atribua um falante a cada segmento:
- "{INTERVIEWER_LABEL}" para quem faz as perguntas;
- "{INTERVIEWEE_LABEL} 1", "{INTERVIEWEE_LABEL} 2", ... para cada pessoa entrevistada;
- "{FALLBACK_LABEL}" quando não for possível distinguir os falantes.

Responda somente com JSON no formato:
{{"speakers": [{{"index": 0, "speaker": "{INTERVIEWER_LABEL}"}}, ...]}}"""


def build_indexed_transcript(segments: List[Segment], max_chars: int = MAX_TRANSCRIPT_CHARS) -> str:
    """
    Render segments as ``[i] text`` lines, cut to ``max_chars`` characters.

    Args:
        segments: Segments in global time order
        max_chars: Character budget for the model prompt

    Returns:
        Indexed transcript, at most ``max_chars`` long
    """
    transcript = "\n".join(f"[{i}] {segment.text}" for i, segment in enumerate(segments))
    return transcript[:max_chars]


def parse_speaker_mapping(content: Optional[str]) -> Dict[int, str]:
    """
    Parse the model answer into ``{segment index: speaker}``.

    Entries with a missing or non-integer index, or an empty speaker, are
    skipped.

    Raises:
        ValueError: The answer is not JSON or has no ``speakers`` list
    """
    if not content:
        raise ValueError("Empty speaker attribution response")

    data = json.loads(content)
    if not isinstance(data, dict) or not isinstance(data.get("speakers"), list):
        raise ValueError("Speaker attribution response has no 'speakers' list")

    mapping = {}
    for entry in data["speakers"]:
        if not isinstance(entry, dict):
            continue
        index = entry.get("index")
        speaker = entry.get("speaker")
        if isinstance(index, bool) or not isinstance(index, int):
            continue
        if not isinstance(speaker, str) or not speaker.strip():
            continue
        mapping[index] = speaker.strip()

    return mapping


def apply_speaker_labels(segments: List[Segment], mapping: Dict[int, str]) -> List[Segment]:
    """Copy of ``segments`` with labels from ``mapping``; unmapped ones keep theirs."""
    return [
        Segment(start=segment.start, end=segment.end, text=segment.text, speaker=mapping.get(i, segment.speaker))
        for i, segment in enumerate(segments)
    ]


class SpeakerAttributor:
    """
    Label interview segments with speaker roles using an OpenAI chat model.

    Uses lazy loading of the OpenAI client, like the transcriber.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: float = 120,
        base_url: Optional[str] = None,
        max_chars: int = MAX_TRANSCRIPT_CHARS,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.base_url = base_url
        self.max_chars = max_chars
        self.client = None

    @classmethod
    def from_config(cls) -> "SpeakerAttributor":
        return cls(
            api_key=ConfigManager.get("OPENAI_API_KEY"),
            model=ConfigManager.get("SPEAKER_MODEL"),
            timeout=ConfigManager.get_float("SPEAKER_TIMEOUT"),
            base_url=ConfigManager.get("LLM_API_BASE_URL") or None,
        )

    def _load_client(self):
        if self.client is not None:
            return self.client

        from openai import OpenAI

        if self.base_url:
            self.client = OpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        else:
            self.client = OpenAI(api_key=self.api_key, timeout=self.timeout)
        return self.client

    def request_mapping(self, segments: List[Segment]) -> Dict[int, str]:
        """
        Ask the model for speaker labels.

        Raises:
            Exception: Any API or parsing failure
        """
        client = self._load_client()
        transcript = build_indexed_transcript(segments, self.max_chars)

        response = client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"Transcrição:\n\n{transcript}"},
            ],
            response_format={"type": "json_object"},
        )

        return parse_speaker_mapping(response.choices[0].message.content)

    def attribute(self, segments: List[Segment]) -> List[Segment]:
        """
        Label segments with speakers, best-effort.

        Args:
            segments: Segments in global time order

        Returns:
            Labeled copy of ``segments``, or ``segments`` unchanged when
            attribution fails for any reason.
        """
        if not segments:
            return segments

        try:
            mapping = self.request_mapping(segments)
        except Exception as e:
            logger.warning(f"Speaker attribution failed, keeping segments unlabeled: {e}")
            return segments

        logger.info(f"Speaker attribution labeled {len(mapping)} of {len(segments)} segments")
        return apply_speaker_labels(segments, mapping)
