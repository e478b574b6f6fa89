from fastapi import APIRouter, Depends, Request
import structlog

from dayplan.api.deps import get_plan_parser, performance_timer
from dayplan.api.schemas import ParsePlanRequest, ParsePlanResponse, ParsedEventRead
from dayplan.core.nlp.parser import PlanParser
from dayplan.core.ratelimit import limiter
from dayplan.core.security import get_current_user
from dayplan.core.settings import settings
from dayplan.db.models import User
from dayplan.services.planner import PlanService

# Set up logging
logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/nlp", tags=["NLP"])


@router.post("/parse-plan",
    response_model=ParsePlanResponse,
    responses={
        400: {"description": "Plan text is missing"},
        429: {"description": "Rate limit exceeded"},
        502: {"description": "Language model failed or returned unusable output"},
        503: {"description": "Language model is not configured"},
    },
    summary="Parse a free-text day plan",
    description="Turns free text into events with activity, location and raw start/end times. Nothing is stored."
)
@limiter.limit(settings.RATE_LIMIT_PARSE)
async def parse_plan(
    request: Request,
    payload: ParsePlanRequest,
    current_user: User = Depends(get_current_user),
    parser: PlanParser = Depends(get_plan_parser),
):
    async with performance_timer("plan_parsing"):
        # no session needed; parsing is stateless
        service = PlanService(session=None, parser=parser)
        events = await service.parse_plan(payload.plan_text, payload.plan_date)
        logger.info("parse_plan_completed", user_id=str(current_user.id), event_count=len(events))
        return ParsePlanResponse(events=[ParsedEventRead(**e.model_dump()) for e in events])
