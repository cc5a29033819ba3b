from textblob import TextBlob


MOOD_LABELS = ("Positive", "Neutral", "Negative")
POLARITY_THRESHOLD = 0.1


def classify_reflection(text: str) -> dict:
    """
    Score a reflection with TextBlob's pattern analyzer.

    Polarity above +0.1 reads as Positive, below -0.1 as Negative, anything in
    between (or an empty reflection) as Neutral.
    """
    cleaned = (text or "").strip()
    if not cleaned:
        return {"label": "Neutral", "polarity": 0.0, "subjectivity": 0.0}

    blob = TextBlob(cleaned)
    polarity = round(blob.sentiment.polarity, 3)
    subjectivity = round(blob.sentiment.subjectivity, 3)

    if polarity > POLARITY_THRESHOLD:
        label = "Positive"
    elif polarity < -POLARITY_THRESHOLD:
        label = "Negative"
    else:
        label = "Neutral"

    return {"label": label, "polarity": polarity, "subjectivity": subjectivity}


def mood_breakdown(reflections: list[str]) -> dict:
    counts = {label: 0 for label in MOOD_LABELS}
    for text in reflections:
        counts[classify_reflection(text)["label"]] += 1
    return counts
