"""
Language profiles used to build study guide prompts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class LanguageExamples:
    summary: str
    reflection_question: str
    prayer_point: str
    interpretation: Optional[str] = None
    style: str = ""


@dataclass(frozen=True)
class LanguageProfile:
    code: str
    name: str
    language_instruction: str
    complexity_instruction: str
    cultural_context: str
    temperature: float
    max_tokens: int
    examples: LanguageExamples
    vocabulary: tuple = ()


ENGLISH = LanguageProfile(
    code="en",
    name="English",
    language_instruction="Write only in clear, accessible English.",
    complexity_instruction="Use clear, pastoral language appropriate for all education levels.",
    cultural_context="Western Christian context with Protestant theological emphasis.",
    temperature=0.3,
    max_tokens=3000,
    examples=LanguageExamples(
        summary="This passage teaches us about God's unfailing love and how we can trust Him in difficult times.",
        reflection_question="How can you practically show God's love to someone in your family or community this week?",
        prayer_point="Ask God to help you trust His love even when circumstances are challenging.",
        interpretation="Paul reminds the church that nothing, not even \"death nor life\", can separate believers from the love of God in Christ.",
        style="Pastoral, encouraging and practical, with modern language that connects biblical truth to daily life.",
    ),
)

HINDI = LanguageProfile(
    code="hi",
    name="Hindi",
    language_instruction="Write only in simple, everyday Hindi. Prefer common spoken words over Sanskritised vocabulary.",
    complexity_instruction="Use easy language that ordinary people can understand.",
    cultural_context="Indian Christian context with sensitivity to local traditions and practices.",
    temperature=0.2,
    max_tokens=4000,
    examples=LanguageExamples(
        summary="यह पद हमें दिखाता है कि परमेश्वर हमसे प्रेम करता है।",
        reflection_question="आप अपने जीवन में परमेश्वर के प्रेम को कैसे देख सकते हैं?",
        prayer_point="हे प्रभु, हमें अपने प्रेम को समझने में मदद करें।",
        interpretation="इस पद में पौलुस हमें बताता है कि परमेश्वर का प्रेम कभी खत्म नहीं होता।",
        style="गांव के लोग समझ सकें, ऐसी सरल भाषा। बाइबल की सच्चाई को रोजाना की जिंदगी से जोड़ें।",
    ),
    vocabulary=(
        "परमेश्वर (न कि ईश्वर)",
        "प्रेम (न कि प्रीति)",
        "मदद (न कि सहायता)",
        "दिल (न कि हृदय)",
        "आशीर्वाद (न कि आशीष)",
    ),
)

MALAYALAM = LanguageProfile(
    code="ml",
    name="Malayalam",
    language_instruction="Write only in simple, everyday Malayalam. Prefer common spoken words over literary vocabulary.",
    complexity_instruction="Use simple vocabulary accessible to Malayalam speakers across Kerala.",
    cultural_context="Kerala Christian context with awareness of the region's strong Protestant heritage.",
    temperature=0.2,
    max_tokens=4000,
    examples=LanguageExamples(
        summary="ഈ വചനം ദൈവത്തിന്റെ സ്നേഹം കാണിക്കുന്നു.",
        reflection_question="നിങ്ങളുടെ ജീവിതത്തിൽ ദൈവത്തിന്റെ സ്നേഹം എങ്ങനെ കാണാം?",
        prayer_point="കർത്താവേ, അങ്ങയുടെ സ്നേഹം മനസ്സിലാക്കാൻ സഹായിക്കേണമേ.",
        style="ലളിതമായ മലയാളം. ബൈബിൾ സത്യത്തെ ദൈനംദിന ജീവിതവുമായി ബന്ധിപ്പിക്കുക.",
    ),
    vocabulary=("ദൈവം", "സ്നേഹം", "സഹായം", "ജീവിതം", "പ്രാർത്ഥന", "അനുഗ്രഹം"),
)

LANGUAGE_PROFILES: Dict[str, LanguageProfile] = {
    profile.code: profile for profile in (ENGLISH, HINDI, MALAYALAM)
}
