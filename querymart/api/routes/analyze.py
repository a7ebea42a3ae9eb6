"""
On-demand classification API Routes.
"""
from fastapi import APIRouter, Depends, HTTPException

from querymart.api.schemas.analyze import AnalyzeRequest, AnalyzeResponse, LabelSchema
from querymart.core.dependencies import get_classifier
from querymart.core.errors import PlanError
from querymart.core.logger import get_logger
from querymart.services.classifier import LABEL_DESCRIPTIONS, Classifier, count_joins
from querymart.services.digest import digest_query
from querymart.services.planner import explain

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Analysis"])


@router.post("/analyze", response_model=AnalyzeResponse)
def analyze_sql(request: AnalyzeRequest, classifier: Classifier = Depends(get_classifier)) -> AnalyzeResponse:
    """
    Classify a statement without storing it.

    Returns the anti-patterns found and the optimized plan they were found in.
    """
    try:
        plan = classifier.plan(request.sql)
    except PlanError as e:
        logger.info(f"Cannot plan submitted SQL: {e}")
        raise HTTPException(status_code=400, detail=f"{type(e).__name__}: {e}")

    labels = sorted(classifier.classify_plan(plan), key=lambda label: label.value)
    _, sql_hash = digest_query(request.sql)
    return AnalyzeResponse(
        sql=request.sql,
        digest_hash=sql_hash,
        labels=[
            LabelSchema(label=label.value, **LABEL_DESCRIPTIONS[label])
            for label in labels
        ],
        num_joins=count_joins(plan),
        plan=explain(plan),
    )
