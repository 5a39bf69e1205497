"""
AirFusion — Air Quality Aggregation Pipeline Package.

Components:
    - ingestion: provider adapters (WAQI, WeatherAPI, Open-Meteo, IQAir,
      Sentinel-5P) normalizing feeds into NormalizedReading
    - confidence: per-reading confidence scoring
    - rules: EPA AQI tables and the threshold rule engine
    - aggregation: fan-out pipeline, summary statistics, quality flags, cache
    - classification: pollution hotspot detection
    - alerts: tiered, deduplicated alert generation
    - realtime: area-scoped event bus and snapshot publisher
    - storage: persistence row format and SQL sink
    - scheduler / service: run guard, periodic timer and inbound interface
"""
