from agentconnect.app import main

main()
