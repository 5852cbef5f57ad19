"""Reply and notification texts sent to users."""

CONTINUATION_MARKER = "....Reply MORE to continue reading"

def opted_out(product_name: str):
    """Acknowledgement for STOP."""
    return f"You have opted out of {product_name} messages. You will not receive further replies."

def account_summary(balance: int):
    """Reply to ACCOUNT."""
    return (
        f"You have {balance} credits remaining.\n"
        "Reply DELETE HISTORY to delete all your message records.\n"
        "Reply DELETE ACCOUNT to delete your account and all data."
    )

def history_deleted():
    return "Your message history has been deleted."

def account_deleted():
    return "Your account and all related data have been deleted."

def nothing_pending():
    """Reply to MORE when there is no unexpired continuation."""
    return "You do not have any previous SMS to continue."

def blocked(payment_url: str, phone: str):
    """Reply when the account has no credits left."""
    return f"You have no credits remaining. Purchase more at {payment_url}/{phone}"

def empty_message():
    return "Please send a text message or audio clip."

def audio_too_large():
    return "Your audio is too large. Please send a shorter clip."

def unsupported_media():
    return "Sorry, I can only process audio messages. Please send a voice recording or text."

def welcome(product_name: str, trial_credits: int, payment_url: str, phone: str):
    """First-message notification."""
    return (
        f"Welcome to {product_name}! You have {trial_credits} trial credits remaining. "
        f"You can buy more at {payment_url}/{phone}\n"
        f"{product_name} uses AI to answer anything you text or say.\n"
        "Reply ACCOUNT at any time to check your credits balance or manage your data."
    )

def low_balance(product_name: str, threshold: int, payment_url: str, phone: str):
    return f"You've used all but {threshold} {product_name} credits.\nPurchase more at {payment_url}/{phone}"

def excess_usage(payment_url: str, phone: str):
    return f"You are almost out of credits. Purchase more at {payment_url}/{phone}"

def purchase_confirmed(product_name: str, balance: int, low_balance_threshold: int):
    return (
        f"Your purchase was successful! Your {product_name} account balance has been updated to {balance} credits.\n\n"
        f"You will receive a message when you have {low_balance_threshold} credits remaining.\n\n"
        "Reply ACCOUNT at any time to check your credits balance or manage your data."
    )

def audio_failed():
    """Reply when an attachment could not be downloaded or transcribed."""
    return "Sorry, I couldn't understand that audio. Please try again or send your message as text."
