"""Principal resolution for the entity history engine.

The acting principal stamps every change event and keys every read status.
Over HTTP it is taken from the X-Principal-Id header, which an upstream
gateway is expected to set after authentication.
"""

from typing import Annotated

from fastapi import Header, HTTPException, status

PRINCIPAL_HEADER = "X-Principal-Id"


class StaticPrincipalProvider:
    """IPrincipalProvider returning a fixed principal id.

    Args:
        principal_id: The identifier to report.
    """

    def __init__(self, principal_id: str) -> None:
        if not principal_id:
            raise ValueError("principal_id must be a non-empty string")
        self._principal_id = principal_id

    def get_principal_id(self) -> str:
        return self._principal_id


def get_current_principal(
    x_principal_id: Annotated[str | None, Header(alias=PRINCIPAL_HEADER)] = None,
) -> StaticPrincipalProvider:
    """FastAPI dependency resolving the acting principal from the request headers.

    Args:
        x_principal_id: Value of the X-Principal-Id header.

    Returns:
        A principal provider bound to the request's principal.

    Raises:
        HTTPException: 401 if the header is missing or blank.
    """
    if x_principal_id is None or not x_principal_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {PRINCIPAL_HEADER} header",
        )
    return StaticPrincipalProvider(x_principal_id.strip())
