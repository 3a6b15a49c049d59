from dataclasses import dataclass

FREE_PLAN_ID=1
PRO_PLAN_ID=2       #120 credits
PREMIUM_PLAN_ID=3   #2000 credits

# Signed amount applied to the balance per applied transformation.
CREDIT_FEE=-1

@dataclass(frozen=True)
class PlanSpec:
    name:str
    price:float
    credits:int


PLANS: dict[int,PlanSpec]={
    FREE_PLAN_ID:PlanSpec(name="Free",price=0,credits=10),
    PRO_PLAN_ID:PlanSpec(name="Pro Package",price=40,credits=120),
    PREMIUM_PLAN_ID:PlanSpec(name="Premium Package",price=199,credits=2000),

}


def insufficient_credits(balance:int, fee:int=CREDIT_FEE) -> bool:
    return balance < abs(fee)
