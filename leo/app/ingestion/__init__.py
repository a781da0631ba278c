"""
ingestion — Producers feeding the alert pipeline.

    mqtt_source   — sensor alerts from one MQTT topic (paho network thread)
    firms_source  — NASA FIRMS active-fire CSV, polled on an interval
"""
