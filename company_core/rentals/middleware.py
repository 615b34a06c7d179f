from django.utils.deprecation import MiddlewareMixin

from .activity import bind_actor, unbind_actor


class CurrentActorMiddleware(MiddlewareMixin):
    """Expose the authenticated staff member to the rental services.

    Session-authenticated users are available here. Token-authenticated API
    requests are resolved later by DRF, so the API views pass ``request.user``
    to the services explicitly.
    """

    def process_request(self, request):
        bind_actor(getattr(request, "user", None))
        return None

    def process_response(self, request, response):
        unbind_actor()
        return response
