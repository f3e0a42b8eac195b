"""
Delivery strategies for finished PDFs.
Each strategy sits behind the DeliveryStrategy protocol so the job layer only
selects one by DeliveryMethod and records its uniform DeliveryResult.
"""

from .drive_share import DriveShareDelivery
from .index import build_index, render_email_html
from .interfaces import DeliveryMethod, DeliveryResult, DeliveryStrategy, DriveGateway, MailGateway, RemoteFile
from .mail_bundle import MailBundleDelivery
