## An end to end run of a door access request: a phone turns its position
## into a geohash, gets the credentials of a role, proves knowledge of the
## role key at that geohash, and the door decides. Run with logging on to
## see each check.

import logging

from privaccess.access import authorize, compute_geohash, geofence_match
from privaccess.rbac import setup_credentials
from privaccess.zkp import Prover, ProofRecord
from privaccess.bn import Bn

# Inside the cell of door 101 (prefix t1q7hk)
LAB_POSITION = (7.5833, 53.9813)

# Aalborg, far away
FAR_POSITION = (57.64911, 10.40744)


def phone(role, lat, lon):
    """The client side: locate, fetch credentials, then prove."""
    geohash = compute_geohash(lat, lon, 7)
    creds = setup_credentials(role)
    prover = Prover(Bn.from_decimal(creds["secret"]))
    record = prover.generate_proof(geohash)
    # What goes over the wire
    return geohash, record.to_json()


def door(door_id, payload, geohash):
    """The door side: parse and decide."""
    record = ProofRecord.from_json(payload)
    return authorize(door_id, record, geohash)


def test_door_access():
    here, payload = phone("faculty", *LAB_POSITION)
    assert here.startswith("t1q7hk")
    decision = door("101", payload, here)
    assert decision.granted
    assert decision.role == "FACULTY"

    here, payload = phone("visitor", *LAB_POSITION)
    decision = door("101", payload, here)
    assert not decision.granted
    assert decision.reason == "unauthorized"

    far, payload = phone("admin", *FAR_POSITION)
    assert far == "u4pruyd"
    decision = door("101", payload, far)
    assert decision.reason == "outside_proximity"

    ## Demo rule without proofs
    assert geofence_match(here, "t1q7hk")


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    here, payload = phone("student", *LAB_POSITION)
    print(door("101", payload, here).to_dict())
