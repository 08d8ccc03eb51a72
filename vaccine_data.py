VACCINE_INFO = {
    "Pfizer-BioNTech": {"required_doses": 2, "allows_booster": True, "doses": ["1", "2", "Booster"]},
    "Moderna": {"required_doses": 2, "allows_booster": True, "doses": ["1", "2", "Booster"]},
    "AstraZeneca": {"required_doses": 2, "allows_booster": True, "doses": ["1", "2", "Booster"]},
    "Covishield": {"required_doses": 2, "allows_booster": True, "doses": ["1", "2", "Booster"]},
    "Covaxin": {"required_doses": 2, "allows_booster": True, "doses": ["1", "2", "Booster"]},
    "Johnson & Johnson": {"required_doses": 1, "allows_booster": True, "doses": ["1", "Booster"]},
    "Sinovac": {"required_doses": 2, "allows_booster": True, "doses": ["1", "2", "Booster"]},
    "Sputnik V": {"required_doses": 2, "allows_booster": True, "doses": ["1", "2", "Booster"]},
}

# Always reported by the dashboard, even at zero
DOSE_BUCKETS = ["1", "2", "3", "Booster"]

GENDERS = ["Male", "Female", "Other"]
