from rest_framework import status
from rest_framework.authentication import SessionAuthentication
from rest_framework.exceptions import APIException

from .services import StoreUnavailableError, current_principal


class ServiceUnavailable(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Service temporarily unavailable'
    default_code = 'service_unavailable'


class PrincipalSessionAuthentication(SessionAuthentication):
    """
    Expose the session principal to DRF views.

    Reads the explicit principal stored by the session service instead of
    ``django.contrib.auth``'s request user. CSRF is enforced for
    authenticated requests, as in DRF's own SessionAuthentication.
    """

    def authenticate(self, request):
        try:
            account = current_principal(session=request._request.session)
        except StoreUnavailableError:
            raise ServiceUnavailable()
        if account is None:
            return None

        self.enforce_csrf(request)
        return (account, None)

    def authenticate_header(self, request):
        return 'Session'
