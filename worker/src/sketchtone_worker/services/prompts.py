"""Instruction templates sent to the vision-language service."""

from __future__ import annotations

BRIEF_TEMPLATE = """You are a professional music supervisor creating prompts for AI music generation based on the attached drawing.

Analyze the image and write a natural-language prompt that can be directly used to generate music matching its theme, mood, and visuals. Start exactly with:
"Background music:"

Include the following details naturally in the paragraph:
1. Overall image meaning/theme: describe what the image depicts and the message or emotion conveyed specifically and clearly.
2. Mood: overall emotional tone (e.g., calm, melancholic, energetic).
3. Genre: a fitting genre (e.g., ambient, lo-fi hip hop, classical piano, synthwave, acoustic folk, cinematic orchestral).
4. Tempo/BPM: approximate beats per minute suitable for the image.
5. Key: musical key (e.g., A minor) or "none".
6. Instruments: lead instruments and percussion that match the theme and visuals.
7. Texture/Rhythm: musical textures, rhythm, or pace (slow, fast, syncopated, flowing).
8. Evolution: describe how the track builds, holds, or releases over time.
9. Duration: {duration} seconds.

Keep output 30-100 words, as a single natural paragraph. Only output the final prompt."""

MISSING_IMAGE_NOTE = (
    "\n\nThe drawing could not be attached. It is a freehand sketch made of "
    "{strokes} strokes; infer a fitting musical character from that alone."
)

REFINE_TEMPLATE = """You are a senior music supervisor. Combine the per-segment musical briefs into one unified prompt for Beatoven.

Requirements:
- Preserve the chronological order of segments.
- Ensure coherence across tempo, genre, and instrumentation.
- Smooth transitions between segments (crossfade 1-3s, carry motifs forward).
- Total track duration: ~{total}s.

Output format:
REFINED_PROMPT:
Write an 80-160 word natural-language brief ready for Beatoven. Include:
1. Overall theme/message of the combined boards clearly and specifically based on drawing.
2. Unified mood and genre.
3. Tempo/BPM and key (consistent or evolving if necessary).
4. Core instruments and textures appearing across sections.
5. Segment evolution: describe how energy builds/holds/releases across the whole track.
6. Transition style (how one segment flows into the next).

SEGMENT_TIMINGS:
One line per segment in order, so that the music has transitions from board to board"""

ADJUST_TEMPLATE = """You are a senior music supervisor. Revise the music generation prompt below according to the requested adjustments.

Requirements:
- Apply the adjustments faithfully.
- Keep the total duration, the segment order and the transition style unless the adjustments explicitly change them.
- Keep the result a single natural-language prompt ready for Beatoven.

CURRENT_PROMPT:
{prompt}

ADJUSTMENTS:
{instructions}

Output format:
REVISED_PROMPT:
The complete revised prompt. Only output the prompt."""

COHERENCE_SUFFIX = (
    "\nEnsure coherence: align tempo, crossfade 1-3s, maintain sonic motifs, avoid abrupt "
    "changes. Output ~{total}s background music track of ordered segments suitable for "
    "scenes/looping.\n"
)

FALLBACK_HEADER = "Compose a single {total}-second track composed of {count} ordered segments. "

SEGMENT_LINE = "Segment {position} ({name}): {text} Duration: {duration}s."

MISSING_BRIEF_TEXT = "No description available."

REFINED_MARKER = "REFINED_PROMPT:"
REVISED_MARKER = "REVISED_PROMPT:"


def brief_instruction(duration: int, *, stroke_count: int, has_image: bool) -> str:
    text = BRIEF_TEMPLATE.format(duration=duration)
    if not has_image:
        text += MISSING_IMAGE_NOTE.format(strokes=stroke_count)
    return text


def after_marker(text: str, marker: str) -> str:
    """Return the text following ``marker`` (case-insensitive), or ``text`` if absent."""
    index = text.lower().find(marker.lower())
    if index < 0:
        return text.strip()
    return text[index + len(marker):].strip()
