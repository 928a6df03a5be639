"""
Safaricom Daraja (M-Pesa) client: OAuth token, STK push and callback parsing.
"""
import base64
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import requests

logger = logging.getLogger(__name__)

SANDBOX_URL = 'https://sandbox.safaricom.co.ke'
PRODUCTION_URL = 'https://api.safaricom.co.ke'

TOKEN_PATH = '/oauth/v1/generate?grant_type=client_credentials'
STK_PUSH_PATH = '/mpesa/stkpush/v1/processrequest'

RESULT_SUCCESS = 0
RESULT_CANCELLED = 1032
RESULT_TIMEOUT = 1037

# Refresh a little before Daraja expires the token
TOKEN_EXPIRY_MARGIN_SECONDS = 60


class MpesaError(Exception):
    """Raised when Daraja cannot be reached or rejects a request"""


def generate_timestamp(now=None):
    return (now or datetime.now()).strftime('%Y%m%d%H%M%S')


def generate_password(shortcode, passkey, timestamp):
    return base64.b64encode(f'{shortcode}{passkey}{timestamp}'.encode('utf-8')).decode('utf-8')


def mask_phone_number(phone):
    if not phone or phone == 'Unknown':
        return phone
    return phone[:5] + '****' + phone[-3:]


def status_for_result_code(result_code):
    """Order payment status for a Daraja ResultCode"""
    if result_code == RESULT_SUCCESS:
        return 'paid'
    if result_code == RESULT_CANCELLED:
        return 'cancelled'
    if result_code == RESULT_TIMEOUT:
        return 'timeout'
    return 'failed'


class MpesaClient:
    def __init__(self, config, session=None):
        self.consumer_key = config.get('CONSUMER_KEY', '')
        self.consumer_secret = config.get('CONSUMER_SECRET', '')
        self.shortcode = str(config.get('MPESA_SHORTCODE', ''))
        self.passkey = config.get('PASS_KEY', '')
        self.base_url = PRODUCTION_URL if config.get('MPESA_ENV') == 'production' else SANDBOX_URL
        self.callback_url = config.get('MPESA_CALLBACK_URL') or \
            f"{config.get('BASE_URL', '').rstrip('/')}/api/{config.get('API_VERSION', 'v1')}/mpesa/callback"
        self.session = session or requests.Session()

        self._token = None
        self._token_expiry = 0.0
        self._token_lock = threading.Lock()

    def get_access_token(self):
        """OAuth access token, cached until shortly before it expires"""
        with self._token_lock:
            if self._token and self._token_expiry > time.time():
                logger.debug("Using cached access token")
                return self._token

            if not (self.consumer_key and self.consumer_secret):
                raise MpesaError('M-Pesa credentials not configured')

            logger.info("Fetching new access token")
            try:
                r = self.session.get(self.base_url + TOKEN_PATH,
                                     auth=(self.consumer_key, self.consumer_secret), timeout=15)
            except requests.RequestException as e:
                logger.error("Error getting access token: %s", e)
                raise MpesaError('Failed to get access token') from e

            if r.status_code != 200:
                logger.error("Error getting access token: HTTP %s %s", r.status_code, r.text)
                raise MpesaError('Failed to get access token')

            try:
                data = r.json()
                token = data['access_token']
            except (ValueError, KeyError) as e:
                logger.error("Error getting access token: malformed response %s", r.text)
                raise MpesaError('Failed to get access token') from e

            expires_in = int(data.get('expires_in', 3599))
            self._token = token
            self._token_expiry = time.time() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
            logger.info("Access token retrieved successfully")
            return token

    def stk_push(self, amount, phone_number, account_reference, transaction_desc='Order Payment'):
        """Ask the customer's phone to confirm a payment; returns Daraja's acknowledgement"""
        if not (self.shortcode and self.passkey):
            raise MpesaError('M-Pesa shortcode/passkey not configured')

        amount = int(round(amount))
        if amount < 1:
            raise MpesaError('Amount must be at least 1')

        token = self.get_access_token()
        timestamp = generate_timestamp()
        payload = {
            'BusinessShortCode': self.shortcode,
            'Password': generate_password(self.shortcode, self.passkey, timestamp),
            'Timestamp': timestamp,
            'TransactionType': 'CustomerPayBillOnline',
            'Amount': amount,
            'PartyA': phone_number,
            'PartyB': self.shortcode,
            'PhoneNumber': phone_number,
            'CallBackURL': self.callback_url,
            'AccountReference': account_reference or 'BakersApp',
            'TransactionDesc': transaction_desc or 'Payment for goods/services',
        }
        headers = {'Authorization': f'Bearer {token}', 'Content-Type': 'application/json'}

        logger.info("Initiating STK push of %s for %s", amount, mask_phone_number(phone_number))
        try:
            r = self.session.post(self.base_url + STK_PUSH_PATH, json=payload, headers=headers, timeout=20)
        except requests.RequestException as e:
            logger.error("Error initiating payment: %s", e)
            raise MpesaError('Failed to initiate payment') from e

        try:
            data = r.json()
        except ValueError:
            data = {}

        if r.status_code != 200 or str(data.get('ResponseCode', '')) != '0':
            description = data.get('errorMessage') or data.get('ResponseDescription') or r.text
            logger.error("STK push rejected: HTTP %s %s", r.status_code, description)
            raise MpesaError(f'STK push rejected: {description}')

        logger.info("STK push accepted, CheckoutRequestID %s", data.get('CheckoutRequestID'))
        return data


@dataclass
class CallbackResult:
    checkout_request_id: Optional[str]
    merchant_request_id: Optional[str]
    result_code: Optional[int]
    result_desc: Optional[str]
    amount: float = 0
    phone_number: str = 'Unknown'
    receipt_number: str = ''
    transaction_date: str = ''
    account_reference: Optional[str] = None

    @property
    def succeeded(self):
        return self.result_code == RESULT_SUCCESS

    @property
    def order_status(self):
        return status_for_result_code(self.result_code)


def parse_callback(stk_callback):
    """Flatten a Body.stkCallback object; metadata is only read for successful payments"""
    result_code = stk_callback.get('ResultCode')
    try:
        result_code = int(result_code)
    except (TypeError, ValueError):
        result_code = None

    result = CallbackResult(
        checkout_request_id=stk_callback.get('CheckoutRequestID'),
        merchant_request_id=stk_callback.get('MerchantRequestID'),
        result_code=result_code,
        result_desc=stk_callback.get('ResultDesc'),
        account_reference=stk_callback.get('AccountReference') or None,
    )

    metadata = stk_callback.get('CallbackMetadata') or {}
    if result.succeeded:
        for item in metadata.get('Item', []):
            name = item.get('Name')
            value = item.get('Value')
            if value is None:
                continue
            if name == 'Amount':
                result.amount = float(value)
            elif name == 'PhoneNumber':
                result.phone_number = str(value)
            elif name == 'MpesaReceiptNumber':
                result.receipt_number = str(value)
            elif name == 'TransactionDate':
                result.transaction_date = str(value)
    return result
