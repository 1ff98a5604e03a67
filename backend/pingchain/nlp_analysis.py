from functools import lru_cache
from transformers import pipeline, Pipeline
from keybert import KeyBERT
from typing import Dict, List, Optional
import logging
import re

logger = logging.getLogger(__name__)

# ---------------------
# Emotion Detection
# ---------------------

@lru_cache(maxsize=1)
def get_emotion_classifier() -> Pipeline:
    return pipeline(
        "text-classification",
        model="j-hartmann/emotion-english-distilroberta-base",
        tokenizer="j-hartmann/emotion-english-distilroberta-base",
        truncation=True,
        max_length=512
    )

def detect_emotion(text: str) -> Optional[str]:
    """
    Returns the dominant emotion label for the given text, or None when the
    text is empty or the classifier fails.
    """
    if not text or not text.strip():
        return None

    try:
        classifier = get_emotion_classifier()
        result = classifier(text[:512])[0]
        return result.get("label", "neutral").lower()
    except Exception as e:
        logger.error(f"[Emotion Detection Error]: {e}")
        return None

# ---------------------
# Topic Extraction
# ---------------------

@lru_cache(maxsize=1)
def get_keyword_model() -> KeyBERT:
    return KeyBERT(model="all-MiniLM-L6-v2")

def extract_topic_tags(text: str, top_n: int = 5) -> List[str]:
    """
    Extract key topic tags using KeyBERT.
    """
    if not text or not text.strip():
        return []

    try:
        keywords = get_keyword_model().extract_keywords(
            text,
            keyphrase_ngram_range=(1, 2),
            stop_words="english",
            use_maxsum=True,
            top_n=top_n
        )
        return [kw[0] for kw in keywords]
    except Exception as e:
        logger.error(f"[Keyword Extraction Error]: {e}")
        return []

# ---------------------
# Keyword Heuristics
# ---------------------

POSITIVE_WORDS = ["great", "good", "awesome", "excellent", "love", "thanks", "thank you", "happy"]
NEGATIVE_WORDS = ["bad", "terrible", "awful", "hate", "disappointed", "angry", "frustrated"]

STYLE_KEYWORDS = {
    "formal": ["dear", "regards", "sincerely", "kindly", "please find", "i trust"],
    "casual": ["hey", "lol", "haha", "what's up", "gonna", "btw", "cheers"],
}

def analyze_sentiment(texts: List[str]) -> str:
    """
    Keyword count over all texts: positive, negative or neutral.
    """
    positive = negative = 0
    for text in texts:
        lower = (text or "").lower()
        positive += sum(1 for word in POSITIVE_WORDS if word in lower)
        negative += sum(1 for word in NEGATIVE_WORDS if word in lower)

    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"

def infer_from_keywords(text: str, keyword_map: Dict[str, List[str]], default: str = "unknown") -> str:
    """
    Infers a category (like communication style) from the presence of keywords.
    """
    text = text.lower()
    for category, keywords in keyword_map.items():
        if any(re.search(rf"\b{re.escape(kw)}\b", text) for kw in keywords):
            return category
    return default

def infer_communication_style(text: str) -> str:
    return infer_from_keywords(text, STYLE_KEYWORDS, default="neutral")
