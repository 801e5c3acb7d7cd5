from licencekit.testing_utils import (  # noqa: F401
    dsa_keys,
    fixed_time_source,
    no_network_time,
    rsa_keys,
    signing_keys,
)
