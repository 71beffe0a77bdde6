"""Submissions bounded context: staged multi-step form sessions.

Lets a client build a complex resource (a product listing, a seller
application) across several requests. Partial state lives in a FormSession
aggregate until the last step finalizes it into a domain entity.
"""

from protean.domain import Domain

from submissions.utils.logging import configure_logging, get_logger

# Configure logging for the application
configure_logging()

# Get logger for this module
logger = get_logger(__name__)

# Domain Composition Root
submissions = Domain(name="submissions")
