def conversation_key(user_a: str, user_b: str, property_id: str) -> str:
    participants = sorted([user_a, user_b])
    return f"{participants[0]}_{participants[1]}_{property_id}"


def counterpart_of(viewer_id: str, sender_id: str, receiver_id: str) -> str:
    return receiver_id if sender_id == viewer_id else sender_id
