from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter, Depends

from ...domain.models import CRMObject, ObjectProperties, PropertiesRequest, TokenRequest
from ...security.auth import User, get_current_user
from ..deps import CRMClientFactory, get_crm_client_factory, http_errors, pipeline_session, resolve_hubspot_token

router = APIRouter(prefix="/hubspot", tags=["hubspot"])


@router.post("/objects", response_model=List[CRMObject])
def list_objects(
    req: TokenRequest,
    user: User = Depends(get_current_user),
    client_factory: CRMClientFactory = Depends(get_crm_client_factory),
) -> List[CRMObject]:
    token = resolve_hubspot_token(req.token, user)
    with http_errors():
        return client_factory(token).list_objects()


@router.post("/properties", response_model=Dict[str, ObjectProperties])
def list_properties(
    req: PropertiesRequest,
    user: User = Depends(get_current_user),
    client_factory: CRMClientFactory = Depends(get_crm_client_factory),
) -> Dict[str, ObjectProperties]:
    """Fetch non-hidden properties and groups per object type.

    The result also becomes the set of properties the caller may select.
    """
    token = resolve_hubspot_token(req.token, user)
    with http_errors():
        metadata = client_factory(token).properties_for(req.object_types)
    with pipeline_session(user.email) as ctl:
        ctl.state.hs_token = token
        ctl.load_metadata(metadata)
    return metadata
