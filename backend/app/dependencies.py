from typing import Optional

from fastapi import HTTPException, Request, status

from app.services.ai_refinement import Classifier


def get_optional_classifier(request: Request) -> Optional[Classifier]:
    return getattr(request.app.state, "classifier", None)


def get_classifier(request: Request) -> Classifier:
    """Single classifier lookup point. Injected into every AI-backed route."""
    classifier = get_optional_classifier(request)
    if classifier is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No AI classifier is configured",
        )
    return classifier
