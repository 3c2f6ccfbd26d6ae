"""
Simple oracle simulator: register a plot, then post satellite verifications
the way the off-chain deforestation analysis would. Verifications apply to
scored plots, so start the server with FARMTRACE_SCHEMA_VERSION=v1 (or v2/v3).
Run:
    python scripts/simulate_oracle.py
"""
import os
import time
import random
import hashlib
import requests

API = os.getenv("FARMTRACE_API", "http://localhost:8000")
FARMER = os.getenv("FARMTRACE_FARMER", "farmer-silva")
ORACLE = os.getenv("FARMTRACE_ORACLE", "oracle-sentinel2")

def main():
    now = int(time.time())
    plot = {
        "plot_id": "PLOT-SIM-001",
        "farmer_name": "Silva Cocoa Farm",
        "location": "Cote d'Ivoire, Aboisso Region",
        "geo_proof": "5.3599,-4.0083",
        "area_hectares": 2.5,
        "commodity_type": "Cocoa",
        "registration_timestamp": now,
    }
    r = requests.post(f"{API}/api/plots", json=plot, headers={"X-Principal": FARMER})
    print("register:", r.status_code, r.text)
    address = requests.get(
        f"{API}/api/plots/address", params={"plot_id": plot["plot_id"], "farmer": FARMER}
    ).json()["address"]

    for i in range(5):
        ts = now + i + 1
        no_deforestation = random.random() > 0.2
        body = {
            "verification_hash": hashlib.sha256(f"{address}:{ts}".encode()).hexdigest(),
            "no_deforestation": no_deforestation,
            "verification_timestamp": ts,
        }
        rr = requests.post(f"{API}/api/plots/{address}/verifications", json=body,
                           headers={"X-Principal": ORACLE})
        print("verification", i, rr.status_code, rr.text)
        time.sleep(1)

    rr = requests.get(f"{API}/api/plots/{address}")
    print("plot:", rr.status_code, rr.text)

if __name__ == "__main__":
    main()
