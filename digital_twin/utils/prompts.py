"""
Prompt builders for the companion's system message and analysis requests.
"""

from typing import Dict, Optional

from ..models.core import DigitalTwinProfile

DEFAULT_SYSTEM_PROMPT = 'You are a helpful AI assistant. Be friendly, empathetic, and provide thoughtful responses.'

MOOD_ANALYSIS_MARKER = 'Analyze the emotional tone of this text'
INSIGHTS_MARKER = 'provide 3-5 insights about the user'


def build_system_message(profile: Optional[DigitalTwinProfile] = None) -> Dict[str, str]:
    """Build the system message describing the digital twin's personality.

    Args:
        profile: Digital twin profile, or None for the generic assistant prompt

    Returns:
        System message dict
    """
    if profile is None:
        return {'role': 'system', 'content': DEFAULT_SYSTEM_PROMPT}

    personality = profile.personality
    settings = profile.settings
    content = f"""You are a digital twin AI assistant with the following characteristics:

Personality Traits: {', '.join(personality.traits)}
Communication Style: {personality.communication_style}
Interests: {', '.join(personality.interests)}
Goals: {', '.join(personality.goals)}

Response Settings:
- Length: {settings.response_length}
- Formality: {settings.formality}
- Preferred Topics: {', '.join(settings.topics)}

Remember previous conversations and adapt your responses based on the user's communication patterns and preferences. Be consistent with your personality while remaining helpful and engaging."""
    return {'role': 'system', 'content': content}


def build_mood_analysis_prompt(text: str) -> str:
    return f"""{MOOD_ANALYSIS_MARKER} and respond with a JSON object containing:
- mood: a single word describing the primary emotion (e.g., "happy", "sad", "anxious", "excited")
- intensity: a number from 1-10 indicating the intensity of the emotion

Text: "{text}"

Respond only with valid JSON."""


def build_insights_prompt(profile: DigitalTwinProfile) -> str:
    personality = profile.personality
    memory = profile.memory
    moods = ', '.join(f'{entry.mood}({entry.intensity})' for entry in memory.mood_history[-5:])
    return f"""Based on this digital twin profile, {INSIGHTS_MARKER}'s personality and behavior patterns:

Personality: {', '.join(personality.traits)}
Communication Style: {personality.communication_style}
Interests: {', '.join(personality.interests)}
Goals: {', '.join(personality.goals)}
Recent Conversations: {' | '.join(memory.conversations[-10:])}
Mood History: {moods}

Provide insights as a JSON array of strings."""
