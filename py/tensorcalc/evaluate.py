"""Request-level driver: register, evaluate, copy out."""

from . import api


def evaluate(scope, request):
    """Run ``request`` in ``scope`` and return a CalculateResponse.

    Results appear in the order of ``request.output_tensor_ids`` (duplicates
    included) and are independent copies, so they remain valid after the
    scope is closed. Any error aborts the whole request.
    """
    scope.register_tensors(request.tensors)
    scope.evaluate(request.output_tensor_ids)

    response = api.CalculateResponse()
    for tensor_id in request.output_tensor_ids:
        response.results.append(scope.fetch_result(tensor_id))
    return response
