"""Configuration settings for Cicerone."""

import os

CONFIG = {
    "proximity_threshold_km": 0.1,  # auto-narrate POIs closer than this
    "default_radius_km": 50,  # 0 = no radius limit
    "radius_choices_km": [0, 0.1, 1, 5, 10, 20, 50],
    "all_categories": "All",  # sentinel prepended to the category list
    # Geolocation policy per tracking mode
    "tracking_modes": {
        "walking": {
            "high_accuracy": True,
            "max_sample_age_ms": 5000,
            "timeout_ms": 10000,
            "poll_interval_ms": None,  # watch only
        },
        "driving": {
            "high_accuracy": True,
            "max_sample_age_ms": 1000,
            "timeout_ms": 2000,
            "poll_interval_ms": 2000,  # extra poll, watch callbacks lag at vehicle speeds
        },
    },
    # Narration
    "narration_delay": 0.25,  # seconds between the tone and the voice
    "speech_language": "it-IT",
    "speech_rate": 1.0,
    "espeak_words_per_minute": 160,  # espeak speed at rate 1.0
    "narrating_indicator": "Sto leggendo...",
    "unlock_confirmation": "Audio attivato",
    # Alert tone
    "tone_frequency": 880,  # Hz
    "tone_duration": 0.2,  # seconds
    "tone_gain": 0.1,
    "tone_sample_rate": 22050,
    "tone_players": [
        ["paplay"],
        ["aplay", "-q"],
        ["termux-media-player", "play"],
    ],
    # Remote POI catalog
    "supabase_url": os.environ.get("CICERONE_SUPABASE_URL", ""),
    "supabase_key": os.environ.get("CICERONE_SUPABASE_KEY", ""),
    "catalog_rpc": "get_poi_with_category",
    "catalog_timeout": 15,  # seconds
    # Map view
    "map_http_port": 8080,
    "map_ws_port": 8765,
    "map_zoom": 9,
    "follow_mode": True,
    "log_interval": 10,  # seconds between periodic state log entries
}
