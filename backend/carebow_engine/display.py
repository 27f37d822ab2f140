from __future__ import annotations

URGENCY_TABLE_VERSION = "1.0"

URGENCY_DISPLAY: dict[str, dict[str, str]] = {
    "self_care": {
        "label": "Self-Care",
        "description": "This can likely be managed at home with rest and care.",
        "color": "#16A34A",
        "background": "#DCFCE7",
        "action": "Continue monitoring",
    },
    "monitor": {
        "label": "Monitor",
        "description": "Keep an eye on your symptoms and note any changes.",
        "color": "#0D9488",
        "background": "#CCFBF1",
        "action": "Watch for changes",
    },
    "non_urgent": {
        "label": "Non-Urgent",
        "description": "Consider scheduling a visit with a healthcare provider.",
        "color": "#2563EB",
        "background": "#DBEAFE",
        "action": "Schedule visit",
    },
    "soon": {
        "label": "See Doctor Soon",
        "description": "It would be good to see a doctor within the next day or two.",
        "color": "#D97706",
        "background": "#FEF3C7",
        "action": "Book appointment",
    },
    "urgent": {
        "label": "Urgent",
        "description": "Please seek medical care today.",
        "color": "#EA580C",
        "background": "#FFEDD5",
        "action": "Seek care today",
    },
    "emergency": {
        "label": "Emergency",
        "description": "Please call emergency services or go to the nearest emergency room.",
        "color": "#DC2626",
        "background": "#FEE2E2",
        "action": "Call emergency services",
    },
}

RECOMMENDED_TIMEFRAMES = {
    "self_care": "Self-care at home",
    "monitor": "Monitor for 24-48 hours",
    "non_urgent": "Within 1-2 weeks",
    "soon": "Within 24-48 hours",
    "urgent": "Today",
    "emergency": "Immediately",
}

DURATION_LABELS = {
    "just_now": "Just now",
    "few_hours": "A few hours",
    "today": "Started today",
    "1_2_days": "1-2 days",
    "3_7_days": "3-7 days",
    "1_2_weeks": "1-2 weeks",
    "more_than_2_weeks": "More than 2 weeks",
    "chronic": "Ongoing/chronic",
}

# Conversational phrasing used inside guidance sentences.
DURATION_PHRASES = {
    "just_now": "a very short time",
    "few_hours": "a few hours",
    "today": "since earlier today",
    "1_2_days": "1-2 days",
    "3_7_days": "about a week",
    "1_2_weeks": "1-2 weeks",
    "more_than_2_weeks": "more than 2 weeks",
    "chronic": "an extended period",
}

FREQUENCY_LABELS = {
    "constant": "Constant",
    "intermittent": "Comes and goes",
    "occasional": "Occasional",
    "first_time": "First time",
}

UNANSWERED_QUESTION_LABELS = {
    "duration": "How long has this been going on?",
    "severity": "How severe is it on a scale of 1-10?",
    "frequency": "How often does this occur?",
    "associated_symptoms": "Any other symptoms?",
    "risk_factors": "Any relevant risk factors?",
    "age": "Patient age",
    "chronic_conditions": "Any chronic conditions?",
    "recent_events": "Any recent events (injury, travel, etc.)?",
    "medications": "Current medications?",
    "location": "Where exactly is the symptom?",
    "triggers": "What triggers it?",
    "relief_attempts": "What have you tried for relief?",
}

FEEDBACK_REASON_LABELS = {
    "too_long": "Too long",
    "didnt_answer": "Didn't answer",
    "felt_unsafe": "Felt unsafe",
    "other": "Other",
}

DISCLAIMER = {
    "short": "This guidance doesn't replace a medical professional.",
    "full": (
        "This information is for educational purposes only and is not a substitute for "
        "professional medical advice, diagnosis, or treatment. Always seek the advice of a "
        "qualified healthcare provider with any questions you may have regarding a medical condition."
    ),
    "emergency": (
        "If you are experiencing a medical emergency, call 911 or your local emergency services immediately."
    ),
}

FORBIDDEN_PHRASES = (
    "don't worry",
    "you'll be fine",
    "definitely",
    "certainly",
    "100%",
    "always",
    "never",
    "nothing to worry about",
)

UNDERSTANDING_OPENER = "Based on what you've shared"

NOT_SPECIFIED = "Not specified"


def urgency_display(urgency_level: str) -> dict[str, str]:
    return dict(URGENCY_DISPLAY[urgency_level])
