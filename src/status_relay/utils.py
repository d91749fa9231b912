import json
import urllib.parse

from status_relay.config import Environment
from status_relay.log import logger


def gh_adapt_state(state: str) -> str:
    """Map a build state to a GitHub commit status state."""
    if state == "abort":
        return "error"
    return state


def make_context(context_prefix: str, context: str, job_name: str) -> str:
    if not context:
        context = job_name
    if context_prefix:
        return f"{context_prefix}/{context}"
    return context


def instance_vars_query(instance_vars: str) -> str:
    """
    Render the JSON object of the pipeline instance vars as the query string the
    Concourse web UI uses: vars.KEY="VALUE", with spaces instead of "+".
    """
    try:
        decoded = json.loads(instance_vars)
    except json.JSONDecodeError as e:
        logger.warning("instance vars: ignoring invalid JSON %r: %s", instance_vars, e)
        return ""
    if not isinstance(decoded, dict):
        logger.warning("instance vars: ignoring non-object JSON %r", instance_vars)
        return ""

    params = []
    for key in sorted(decoded):
        value = decoded[key]
        if not isinstance(value, str):
            value = json.dumps(value, separators=(",", ":"))
        params.append((f"vars.{key}", f'"{value}"'))
    return urllib.parse.urlencode(params).replace("+", " ")


def build_url(env: Environment) -> str:
    """Return the URL of the current build in the Concourse web UI."""
    url = (
        f"{env.ATC_EXTERNAL_URL}/teams/{env.BUILD_TEAM_NAME}"
        f"/pipelines/{env.BUILD_PIPELINE_NAME}"
        f"/jobs/{env.BUILD_JOB_NAME}/builds/{env.BUILD_NAME}"
    )
    if env.BUILD_PIPELINE_INSTANCE_VARS:
        query = instance_vars_query(env.BUILD_PIPELINE_INSTANCE_VARS)
        if query:
            url += "?" + query
    return url
