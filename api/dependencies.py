from services.scrape_events import ScrapeEventBus, scrape_events
from services.scrape_job_service import ScrapeJobService

scrape_job_service = ScrapeJobService(events=scrape_events)


def get_scrape_events() -> ScrapeEventBus:
    return scrape_events


def get_scrape_job_service() -> ScrapeJobService:
    return scrape_job_service
