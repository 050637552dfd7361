"""
Asset Ingestion Pipeline

Storage event -> consumer -> derivative generation -> status commit:
1. consumer   - relay message intake, event/key filtering, per-asset isolation
2. ingestion  - derivative policy, hi-res/base writes, raw cleanup
3. relay      - SQS pull adapter
4. tasks      - Celery entry points
"""
