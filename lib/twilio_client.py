from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException
from twilio.twiml.messaging_response import MessagingResponse
from typing import Optional
import logging
from lib.error_handler import CarrierError

logger = logging.getLogger(__name__)

class TwilioClient:
    """Carrier gateway: TwiML reply envelopes and out-of-band sends."""

    def __init__(self, account_sid: str, auth_token: str, phone_number: str, client: Optional[Client] = None):
        self.phone_number = phone_number
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._client = client

    @property
    def client(self) -> Client:
        # Created on first send so the webhook can answer without credentials
        if self._client is None:
            try:
                self._client = Client(self._account_sid, self._auth_token)
            except Exception as e:
                logger.error(f"Failed to initialize Twilio client: {str(e)}")
                raise CarrierError("Failed to initialize messaging service")
        return self._client

    @staticmethod
    def build_reply_envelope(message: str) -> str:
        """Create the TwiML document Twilio expects as the webhook response"""
        resp = MessagingResponse()
        resp.message(message)
        return str(resp)

    def send_message(self, to_number: str, message: str) -> str:
        """Send an SMS message and return the message SID."""
        if not to_number or not message:
            raise CarrierError("Phone number and message are required")
        try:
            sent = self.client.messages.create(
                body=message,
                from_=self.phone_number,
                to=to_number
            )
            logger.info(f"Message sent successfully to {to_number}: {sent.sid}")
            return sent.sid
        except TwilioRestException as e:
            logger.error(f"Twilio error sending message: {str(e)}")
            if e.code == 21211:  # Invalid phone number
                raise CarrierError("Invalid phone number format.")
            elif e.code == 21610:  # Recipient unsubscribed
                raise CarrierError("Recipient has opted out of messages.")
            elif e.code == 21608:  # Unverified number
                raise CarrierError("This phone number is not verified with our test account.")
            else:
                raise CarrierError(f"Failed to send message: {str(e)}")
        except CarrierError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error sending message: {str(e)}")
            raise CarrierError("An unexpected error occurred while sending the message.")
