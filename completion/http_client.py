# completion/http_client.py
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

USER_AGENT = "tempus-completion/0.1"


def make_session(pool=8, retries=0, backoff=0.2):
    """
    Pooled session sized for the fetch workers. The fetcher passes
    retries=0: a failed request fails its batch and the scheduler backs off.
    """
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=backoff,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET"}),
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    # block on a full pool so no more than `pool` requests are in flight
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=pool,
                          max_retries=retry, pool_block=True)

    s = Session()
    s.mount("https://", adapter)
    s.mount("http://", adapter)
    s.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
    return s
